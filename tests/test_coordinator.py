"""Tests for the Lead Coordinator and the assembled pipeline."""

import asyncio
import json

import httpx
import pytest

from jobs.errors import QueueUnavailable
from jobs.models import (
    AI_QUEUE,
    ANALYTICS_QUEUE,
    EXPORT_QUEUE,
    NOTIFICATION_QUEUE,
    AIProcessingPayload,
    Job,
    JobOptions,
)
from jobs.store import MemoryJobStore
from lead_scoring.scoring_model import InvalidSubmission
from pipeline.downstream import WebhookDelivery
from pipeline.errors import CampaignNotFound, ReprocessSkipped, ResultNotReady
from pipeline.events import EventBus, LeadCompleted
from pipeline.lead_store import InMemoryLeadStore, LeadStatus

from .conftest import FakeProvider, make_settings


async def wait_for_status(pipeline, lead_id, *statuses, timeout=5.0):
    """Poll until the lead reaches one of the given statuses."""
    wanted = {s.value for s in statuses}

    async def _poll():
        while True:
            status = await pipeline.get_lead_status(lead_id)
            if status["status"] in wanted:
                return status
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(_poll(), timeout)


class UnavailableJobStore(MemoryJobStore):
    async def add(self, job):
        raise QueueUnavailable("redis down")


class RecordingLeadStore(InMemoryLeadStore):
    def __init__(self):
        super().__init__()
        self.created = []

    async def create(self, lead):
        self.created.append(lead.id)
        return await super().create(lead)


# ── Submission ────────────────────────────────────────

class TestSubmission:
    def test_hot_lead_end_to_end(self, make_pipeline):
        provider = FakeProvider("openai", responses=["Great fit, Ada."])

        async def main():
            pipeline = await make_pipeline({"openai": provider})
            await pipeline.start()
            try:
                lead = await pipeline.submit_lead("business-readiness", {"q1": "business", "name": "Ada"})
                submitted = lead.status
                status = await wait_for_status(pipeline, lead.id, LeadStatus.COMPLETED)
                result = await pipeline.get_lead_result(lead.id)
                await pipeline.queue.wait_until_idle(timeout=5)
            finally:
                await pipeline.stop()
            return lead, submitted, status, result

        lead, submitted, status, result = asyncio.run(main())

        assert submitted == LeadStatus.QUEUED_FOR_AI
        assert lead.lead_score == 80
        assert lead.lead_quality == "hot"
        assert status["has_result"] is True
        assert status["attempt_count"] == 1
        assert result["ai_result"] == "Great fit, Ada."
        assert result["ai_provider"] == "openai"
        assert provider.prompts == ["Hi Ada, you scored 80 (hot) on Business Readiness Quiz."]

    def test_submission_by_campaign_id(self, make_pipeline):
        async def main():
            pipeline = await make_pipeline()
            return await pipeline.submit_lead("camp-1", {"q1": "personal"})

        lead = asyncio.run(main())
        assert lead.lead_score == 30
        assert lead.lead_quality == "cold"

    def test_unknown_campaign(self, make_pipeline):
        async def main():
            pipeline = await make_pipeline()
            await pipeline.submit_lead("missing", {"q1": "business"})

        with pytest.raises(CampaignNotFound):
            asyncio.run(main())

    def test_missing_required_answer(self, make_pipeline):
        async def main():
            pipeline = await make_pipeline()
            await pipeline.submit_lead("business-readiness", {"q2": "yes"})

        with pytest.raises(InvalidSubmission) as exc:
            asyncio.run(main())
        assert exc.value.missing == ["q1"]

    def test_broken_rules_fail_permanently(self, make_pipeline):
        async def main():
            pipeline = await make_pipeline()
            lead = await pipeline.submit_lead("broken", {"q1": "x"})
            stats = await pipeline.get_queue_stats(AI_QUEUE)
            return lead, stats

        lead, stats = asyncio.run(main())
        assert lead.status == LeadStatus.FAILED_PERMANENT
        assert lead.last_error.startswith("ScoringRuleError")
        assert stats["waiting"] == 0

    def test_one_ai_job_per_lead(self, make_pipeline):
        async def main():
            pipeline = await make_pipeline()
            lead = await pipeline.submit_lead("business-readiness", {"q1": "business"})
            again = await pipeline.coordinator.queue.enqueue(
                AI_QUEUE,
                AIProcessingPayload(lead_id=lead.id, campaign_id="camp-1"),
                JobOptions(dedupe_key=f"lead:{lead.id}"),
            )
            return lead, again, await pipeline.get_queue_stats(AI_QUEUE)

        lead, again, stats = asyncio.run(main())
        assert again.created is False
        assert again.job_id == lead.ai_job_id
        assert stats["waiting"] == 1

    def test_hot_leads_run_first(self, make_pipeline):
        async def main():
            pipeline = await make_pipeline()
            cold = await pipeline.submit_lead("business-readiness", {"q1": "personal"})
            hot = await pipeline.submit_lead("business-readiness", {"q1": "business"})
            cold_job = await pipeline.queue.get_job(cold.ai_job_id)
            hot_job = await pipeline.queue.get_job(hot.ai_job_id)
            return cold_job, hot_job

        cold_job, hot_job = asyncio.run(main())
        assert hot_job.priority < cold_job.priority

    def test_queue_unavailable_marks_lead_failed(self, make_pipeline):
        leads = RecordingLeadStore()

        async def main():
            pipeline = await make_pipeline(job_store=UnavailableJobStore(), lead_store=leads)
            try:
                await pipeline.submit_lead("business-readiness", {"q1": "business"})
            except QueueUnavailable:
                return await pipeline.get_lead_status(leads.created[0])
            raise AssertionError("QueueUnavailable not raised")

        status = asyncio.run(main())
        assert status["status"] == "failed"
        assert status["lead_score"] == 80
        assert status["last_error"].startswith("QueueUnavailable")


# ── AI processing ─────────────────────────────────────

class TestAIProcessing:
    def test_fallback_provider_recorded(self, make_pipeline):
        providers = {
            "openai": FakeProvider("openai", fail=True),
            "anthropic": FakeProvider("anthropic", responses=["From Claude"]),
        }

        async def main():
            pipeline = await make_pipeline(providers)
            await pipeline.start()
            try:
                lead = await pipeline.submit_lead("business-readiness", {"q1": "business"})
                await wait_for_status(pipeline, lead.id, LeadStatus.COMPLETED)
                return await pipeline.get_lead_result(lead.id)
            finally:
                await pipeline.stop()

        result = asyncio.run(main())
        assert result["ai_provider"] == "anthropic"
        assert result["ai_result"] == "From Claude"

    def test_exhausted_retries_fail_permanently(self, make_pipeline):
        provider = FakeProvider("openai", fail=True)

        async def main():
            pipeline = await make_pipeline({"openai": provider})
            await pipeline.start()
            try:
                lead = await pipeline.submit_lead("business-readiness", {"q1": "business"})
                status = await wait_for_status(pipeline, lead.id, LeadStatus.FAILED_PERMANENT)
                try:
                    await pipeline.get_lead_result(lead.id)
                except ResultNotReady as e:
                    not_ready = e
                stats = await pipeline.get_queue_stats(AI_QUEUE)
            finally:
                await pipeline.stop()
            return status, not_ready, stats

        status, not_ready, stats = asyncio.run(main())
        assert status["attempt_count"] == 3
        assert status["last_error"].startswith("JobRetriesExhausted")
        assert not_ready.status == "failed_permanent"
        assert stats["failed"] == 1
        assert provider.calls == 3

    def test_reprocess_after_permanent_failure(self, make_pipeline):
        provider = FakeProvider("openai", fail=True)

        async def main():
            pipeline = await make_pipeline({"openai": provider})
            await pipeline.start()
            try:
                lead = await pipeline.submit_lead("business-readiness", {"q1": "business"})
                await wait_for_status(pipeline, lead.id, LeadStatus.FAILED_PERMANENT)

                provider.fail = False
                pipeline.reset_provider_health()
                reprocessed = await pipeline.reprocess_lead(lead.id)
                status = await wait_for_status(pipeline, lead.id, LeadStatus.COMPLETED)
                current = await pipeline.leads.get(lead.id)
            finally:
                await pipeline.stop()
            return reprocessed, status, current

        reprocessed, status, current = asyncio.run(main())
        assert reprocessed.cycle == 1
        assert reprocessed.lead_score == 80
        assert status["attempt_count"] == 1
        assert status["last_error"] is None
        assert current.ai_result

    def test_reprocess_replaces_waiting_job(self, make_pipeline):
        async def main():
            pipeline = await make_pipeline()
            lead = await pipeline.submit_lead("business-readiness", {"q1": "business"})
            reprocessed = await pipeline.reprocess_lead(lead.id)
            old_job = await pipeline.queue.get_job(lead.ai_job_id)
            stats = await pipeline.get_queue_stats(AI_QUEUE)
            return lead, reprocessed, old_job, stats

        lead, reprocessed, old_job, stats = asyncio.run(main())
        assert reprocessed.ai_job_id != lead.ai_job_id
        assert reprocessed.status == LeadStatus.QUEUED_FOR_AI
        assert old_job.last_error == "cancelled"
        assert stats["waiting"] == 1

    def test_reprocess_while_ai_job_runs_is_refused(self, make_pipeline):
        provider = FakeProvider("openai", delay=0.5)

        async def main():
            pipeline = await make_pipeline({"openai": provider})
            await pipeline.start()
            try:
                lead = await pipeline.submit_lead("business-readiness", {"q1": "business"})
                await wait_for_status(pipeline, lead.id, LeadStatus.AI_PROCESSING)
                with pytest.raises(ReprocessSkipped) as skipped:
                    await pipeline.reprocess_lead(lead.id)
                current = await pipeline.leads.get(lead.id)
            finally:
                await pipeline.stop()
            return lead, skipped.value, current

        lead, skipped, current = asyncio.run(main())
        assert skipped.status == "ai_processing"
        assert current.cycle == 0
        assert current.ai_job_id == lead.ai_job_id

    def test_stale_job_is_ignored(self, make_pipeline):
        async def main():
            pipeline = await make_pipeline()
            lead = await pipeline.submit_lead("business-readiness", {"q1": "business"})
            await pipeline.reprocess_lead(lead.id)
            stale = AIProcessingPayload(lead_id=lead.id, campaign_id="camp-1", cycle=0)
            result = await pipeline.coordinator.process_ai_job(
                stale, Job(queue_name=AI_QUEUE, payload=stale.model_dump(), attempts=1)
            )
            return result, await pipeline.get_lead_status(lead.id)

        result, status = asyncio.run(main())
        assert result.status == "ok"
        assert result.value == "stale"
        assert status["status"] == "queued_for_ai"

    def test_subscriber_failure_keeps_lead_completed(self, make_pipeline):
        async def explode(event):
            raise RuntimeError("crm offline")

        async def main():
            pipeline = await make_pipeline()
            pipeline.bus.subscribe(LeadCompleted, explode)
            await pipeline.start()
            try:
                lead = await pipeline.submit_lead("business-readiness", {"q1": "business"})
                status = await wait_for_status(pipeline, lead.id, LeadStatus.COMPLETED)
                await pipeline.queue.wait_until_idle(timeout=5)
            finally:
                await pipeline.stop()
            return status

        assert asyncio.run(main())["status"] == "completed"


# ── Downstream ────────────────────────────────────────

class TestDownstream:
    def test_export_notification_and_analytics(self, make_pipeline):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        settings = make_settings(
            export_webhook_url="https://crm.example.com/leads",
            notification_webhook_url="https://mail.example.com/send",
            webhook_api_key="secret",
        )

        async def main():
            pipeline = await make_pipeline(settings=settings, transport=httpx.MockTransport(handler))
            await pipeline.start()
            try:
                lead = await pipeline.submit_lead("export-quiz", {"q1": "yes", "email": "ada@example.com"})
                await wait_for_status(pipeline, lead.id, LeadStatus.COMPLETED)
                await pipeline.queue.wait_until_idle(timeout=5)
                stats = await pipeline.get_queue_stats()
            finally:
                await pipeline.stop()
            return lead, stats, pipeline.downstream.analytics.summary()

        lead, stats, analytics = asyncio.run(main())

        assert stats["queues"][EXPORT_QUEUE]["completed"] == 1
        assert stats["queues"][NOTIFICATION_QUEUE]["completed"] == 1
        assert stats["queues"][ANALYTICS_QUEUE]["completed"] == 1
        assert analytics["by_quality"] == {"warm": 1}

        by_host = {r.url.host: r for r in requests}
        export = json.loads(by_host["crm.example.com"].content)
        assert export["id"] == lead.id
        assert export["campaign_slug"] == "export-quiz"
        notification = json.loads(by_host["mail.example.com"].content)
        assert notification["to"] == "ada@example.com"
        assert by_host["crm.example.com"].headers["X-API-Key"] == "secret"

    def test_show_only_campaign_skips_notification(self, make_pipeline):
        async def main():
            pipeline = await make_pipeline()
            await pipeline.start()
            try:
                lead = await pipeline.submit_lead("business-readiness", {"q1": "business"})
                await wait_for_status(pipeline, lead.id, LeadStatus.COMPLETED)
                await pipeline.queue.wait_until_idle(timeout=5)
                return await pipeline.get_queue_stats()
            finally:
                await pipeline.stop()

        stats = asyncio.run(main())
        assert stats["queues"][NOTIFICATION_QUEUE]["completed"] == 0
        assert stats["queues"][EXPORT_QUEUE]["completed"] == 0
        assert stats["queues"][ANALYTICS_QUEUE]["completed"] == 1


class TestWebhookDelivery:
    def deliver(self, handler, url="https://hooks.example.com/in"):
        delivery = WebhookDelivery(url, api_key="k", transport=httpx.MockTransport(handler))
        return asyncio.run(delivery.send({"lead_id": "l1"}, "Export"))

    def test_success(self):
        assert self.deliver(lambda r: httpx.Response(204)).status == "ok"

    def test_server_error_is_retried(self):
        assert self.deliver(lambda r: httpx.Response(503, text="busy")).status == "retry"

    def test_client_error_fails(self):
        result = self.deliver(lambda r: httpx.Response(400, text="bad"))
        assert result.status == "fail"
        assert "400" in result.error

    def test_transport_error_is_retried(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert self.deliver(handler).status == "retry"

    def test_no_url_is_skipped(self):
        result = asyncio.run(WebhookDelivery(None).send({"lead_id": "l1"}, "Export"))
        assert result.status == "ok"
        assert result.value == "skipped"


class TestEventBus:
    def test_failures_are_isolated(self):
        bus = EventBus()
        received = []

        async def broken(event):
            raise ValueError("boom")

        async def working(event):
            received.append(event.lead_id)

        bus.subscribe(LeadCompleted, broken)
        bus.subscribe(LeadCompleted, working)
        event = LeadCompleted(lead_id="l1", campaign_id="c1", lead_score=80, lead_quality="hot", provider="openai")

        assert asyncio.run(bus.publish(event)) == 1
        assert received == ["l1"]
