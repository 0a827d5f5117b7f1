"""Shared fixtures for Quiz Lead Pipeline tests."""

import asyncio
import os
from typing import List, Optional

import pytest

# Ensure we use test settings
os.environ.setdefault("QUEUE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.pop("DATABASE_URL", None)

from config.settings import Settings
from lead_scoring.campaign import Campaign
from llm.errors import ProviderError
from llm.providers.base import BaseProvider, CompletionOptions
from pipeline.campaigns import InMemoryCampaignSource
from pipeline.service import LeadPipeline


class FakeProvider(BaseProvider):
    """Scripted provider adapter."""

    def __init__(
        self,
        name: str,
        responses: Optional[List[str]] = None,
        fail: bool = False,
        delay: float = 0.0,
    ):
        super().__init__(model_id=f"{name}-test")
        self.name = name
        self.responses = list(responses or [])
        self.fail = fail
        self.delay = delay
        self.calls = 0
        self.prompts: List[str] = []
        self.options: List[CompletionOptions] = []

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        self.calls += 1
        self.prompts.append(prompt)
        self.options.append(options)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ProviderError(self.name, "simulated outage")
        if len(self.responses) > 1:
            return self.responses.pop(0)
        if self.responses:
            return self.responses[0]
        return f"Personalized result from {self.name}"


def make_settings(**overrides) -> Settings:
    """Settings with fast queues and no external backends."""
    values = dict(
        queue_backend="memory",
        database_url=None,
        queue_poll_interval=0.01,
        ai_queue_backoff_ms=1,
        export_queue_backoff_ms=1,
        notification_queue_backoff_ms=1,
        analytics_queue_backoff_ms=1,
        ai_queue_attempts=3,
        ai_provider_priority="openai,anthropic,gemini",
        ai_timeout_ms=2000,
        export_webhook_url=None,
        notification_webhook_url=None,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def business_campaign():
    """q1 == "business" scores 80 and hot."""
    return Campaign.model_validate({
        "id": "camp-1",
        "slug": "business-readiness",
        "title": "Business Readiness Quiz",
        "questions": [
            {"id": "q1", "question": "What are you using this for?", "required": True,
             "options": ["business", "personal"]},
            {"id": "q2", "question": "Do you have a team?", "options": ["yes", "no"]},
            {"id": "email", "question": "Your email", "type": "email"},
        ],
        "scoring": {
            "rules": [
                {"if": {"q1": "business"}, "then": {"leadScore": 80, "leadQuality": "hot"}},
            ],
            "default": {"score": 30, "quality": "cold"},
        },
        "prompt_template": "Hi {{firstName}}, you scored {{leadScore}} ({{leadQuality}}) on {{campaignTitle}}.",
    })


@pytest.fixture
def broken_campaign():
    """A rule using an operator the engine does not know."""
    return Campaign.model_validate({
        "id": "camp-broken",
        "slug": "broken",
        "title": "Broken Quiz",
        "questions": [{"id": "q1"}],
        "scoring": {
            "rules": [
                {"when": [{"field": "q1", "operator": "contains", "value": "x"}], "score": 10},
            ],
        },
    })


@pytest.fixture
def downstream_campaign():
    """Exports leads and emails results."""
    return Campaign.model_validate({
        "id": "camp-export",
        "slug": "export-quiz",
        "title": "Export Quiz",
        "questions": [{"id": "q1"}, {"id": "email"}],
        "scoring": {"rules": [{"when": {"q1": "yes"}, "score": 65}]},
        "result_delivery_mode": "show_and_email",
        "export_enabled": True,
    })


@pytest.fixture
def campaigns(business_campaign, broken_campaign, downstream_campaign):
    return InMemoryCampaignSource([business_campaign, broken_campaign, downstream_campaign])


@pytest.fixture
def make_pipeline(settings, campaigns):
    """Build a pipeline over fake providers."""

    async def _make(providers=None, **kwargs) -> LeadPipeline:
        if providers is None:
            providers = {"openai": FakeProvider("openai")}
        return await LeadPipeline.create(
            kwargs.pop("settings", settings),
            campaigns=campaigns,
            providers=providers,
            **kwargs,
        )

    return _make
