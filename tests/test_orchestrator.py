"""Tests for the AI Orchestrator, provider health and prompt rendering."""

import asyncio

import pytest
from pydantic import BaseModel

from llm.cache import ResponseCache
from llm.errors import AIGenerationFailed
from llm.health import CircuitState, HealthTracker
from llm.orchestrator import AIOrchestrator, GenerateOptions, strip_code_fences
from llm.prompt_templates import PromptTemplates
from llm.registry import ProviderName, parse_provider, validate_model_provider

from .conftest import FakeProvider


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_orchestrator(*providers, **kwargs):
    return AIOrchestrator({p.name: p for p in providers}, **kwargs)


class Summary(BaseModel):
    summary: str
    score: int


# ── Fallback ──────────────────────────────────────────

class TestFallback:
    def test_first_healthy_provider_wins(self):
        a, b = FakeProvider("openai"), FakeProvider("anthropic")
        result = asyncio.run(make_orchestrator(a, b).generate("Hello"))
        assert result.provider == "openai"
        assert result.cached is False
        assert a.calls == 1
        assert b.calls == 0

    def test_falls_back_in_priority_order(self):
        a = FakeProvider("openai", fail=True)
        b = FakeProvider("anthropic", fail=True)
        c = FakeProvider("gemini", responses=["from gemini"])
        orchestrator = make_orchestrator(a, b, c)

        result = asyncio.run(orchestrator.generate("Hello"))

        assert result.provider == "gemini"
        assert result.text == "from gemini"
        assert [e.provider for e in result.failed_attempts] == ["openai", "anthropic"]
        assert orchestrator.health.snapshot("openai").consecutive_failures == 1
        assert orchestrator.health.snapshot("anthropic").consecutive_failures == 1
        assert orchestrator.health.snapshot("gemini").consecutive_failures == 0
        assert orchestrator.status()["usage"]["fallbacks"] == 1

    def test_all_providers_fail(self):
        orchestrator = make_orchestrator(
            FakeProvider("openai", fail=True), FakeProvider("anthropic", fail=True)
        )
        with pytest.raises(AIGenerationFailed) as exc:
            asyncio.run(orchestrator.generate("Hello"))
        assert [e.provider for e in exc.value.errors] == ["openai", "anthropic"]
        assert exc.value.to_dict()["error"] == "ai_generation_failed"

    def test_priority_list_overrides_insertion_order(self):
        a, b = FakeProvider("openai"), FakeProvider("anthropic")
        result = asyncio.run(make_orchestrator(a, b, priority=["anthropic", "openai"]).generate("Hi"))
        assert result.provider == "anthropic"

    def test_preferred_provider_goes_first(self):
        a, b = FakeProvider("openai"), FakeProvider("anthropic")
        result = asyncio.run(
            make_orchestrator(a, b).generate("Hi", options=GenerateOptions(preferred_provider="claude"))
        )
        assert result.provider == "anthropic"
        assert a.calls == 0

    def test_model_selects_its_provider(self):
        a, b = FakeProvider("openai"), FakeProvider("anthropic")
        result = asyncio.run(
            make_orchestrator(a, b).generate(
                "Hi", options=GenerateOptions(model="claude-3-5-haiku-20241022")
            )
        )
        assert result.provider == "anthropic"
        assert result.model == "claude-3-5-haiku-20241022"
        assert b.options[0].model == "claude-3-5-haiku-20241022"

    def test_model_not_forwarded_to_other_providers(self):
        a = FakeProvider("anthropic", fail=True)
        b = FakeProvider("openai")
        result = asyncio.run(
            make_orchestrator(a, b).generate(
                "Hi", options=GenerateOptions(model="claude-3-5-haiku-20241022")
            )
        )
        assert result.provider == "openai"
        assert b.options[0].model is None
        assert result.model == "openai-test"

    def test_timeout_counts_as_failure(self):
        slow = FakeProvider("openai", delay=0.5)
        fast = FakeProvider("anthropic")
        result = asyncio.run(
            make_orchestrator(slow, fast).generate("Hi", options=GenerateOptions(timeout_ms=50))
        )
        assert result.provider == "anthropic"
        assert result.failed_attempts[0].kind == "timeout"

    def test_options_reach_provider(self):
        a = FakeProvider("openai")
        asyncio.run(make_orchestrator(a).generate(
            "Hi", options=GenerateOptions(temperature=0.2, max_tokens=50, system="Be brief")
        ))
        sent = a.options[0]
        assert sent.temperature == 0.2
        assert sent.max_tokens == 50
        assert sent.system == "Be brief"
        assert sent.json_mode is False


# ── Circuit breaker ───────────────────────────────────

class TestCircuitBreaker:
    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def health(self, clock):
        return HealthTracker(failure_threshold=2, cooldown_seconds=30, clock=clock)

    def test_circuit_opens_after_threshold(self, health):
        flaky = FakeProvider("openai", fail=True)
        backup = FakeProvider("anthropic")
        orchestrator = make_orchestrator(flaky, backup, health=health)

        asyncio.run(orchestrator.generate("one"))
        asyncio.run(orchestrator.generate("two"))
        assert health.state("openai") == CircuitState.OPEN

        asyncio.run(orchestrator.generate("three"))
        assert flaky.calls == 2
        assert backup.calls == 3

    def test_half_open_success_closes_circuit(self, health, clock):
        flaky = FakeProvider("openai", fail=True)
        orchestrator = make_orchestrator(flaky, FakeProvider("anthropic"), health=health)
        asyncio.run(orchestrator.generate("one"))
        asyncio.run(orchestrator.generate("two"))

        clock.now += 30
        assert health.state("openai") == CircuitState.HALF_OPEN
        flaky.fail = False
        result = asyncio.run(orchestrator.generate("three"))

        assert result.provider == "openai"
        assert health.state("openai") == CircuitState.CLOSED
        assert health.snapshot("openai").consecutive_failures == 0

    def test_failed_trial_call_reopens_circuit(self, health, clock):
        flaky = FakeProvider("openai", fail=True)
        orchestrator = make_orchestrator(flaky, FakeProvider("anthropic"), health=health)
        asyncio.run(orchestrator.generate("one"))
        asyncio.run(orchestrator.generate("two"))

        clock.now += 30
        asyncio.run(orchestrator.generate("three"))
        assert flaky.calls == 3
        assert health.state("openai") == CircuitState.OPEN

    def test_half_open_admits_one_caller(self, clock):
        health = HealthTracker(failure_threshold=1, cooldown_seconds=30, clock=clock)
        health.record_failure("openai", "boom")
        clock.now += 30

        admitted = [health.is_available("openai") for _ in range(5)]
        assert admitted == [True, False, False, False, False]
        assert health.snapshot("openai").trial_in_flight is True

        health.record_success("openai")
        assert health.is_available("openai") is True
        assert health.is_available("openai") is True

    def test_released_trial_slot_is_reusable(self, clock):
        health = HealthTracker(failure_threshold=1, cooldown_seconds=30, clock=clock)
        health.record_failure("openai", "boom")
        clock.now += 30

        assert health.is_available("openai") is True
        health.release_trial("openai")
        assert health.is_available("openai") is True
        assert health.is_available("openai") is False

    def test_concurrent_requests_send_one_trial_call(self, health, clock):
        flaky = FakeProvider("openai", fail=True, delay=0.05)
        backup = FakeProvider("anthropic")
        orchestrator = make_orchestrator(flaky, backup, health=health)
        asyncio.run(orchestrator.generate("one"))
        asyncio.run(orchestrator.generate("two"))

        clock.now += 30
        flaky.fail = False

        async def main():
            return await asyncio.gather(*(orchestrator.generate(f"lead {i}") for i in range(5)))

        results = asyncio.run(main())
        assert flaky.calls == 3
        assert sorted(r.provider for r in results) == ["anthropic"] * 4 + ["openai"]
        assert health.state("openai") == CircuitState.CLOSED

    def test_all_circuits_open_fails_without_calls(self, health):
        a = FakeProvider("openai", fail=True)
        orchestrator = make_orchestrator(a, health=health)
        for _ in range(2):
            with pytest.raises(AIGenerationFailed):
                asyncio.run(orchestrator.generate("x"))

        with pytest.raises(AIGenerationFailed) as exc:
            asyncio.run(orchestrator.generate("x"))
        assert exc.value.errors == []
        assert a.calls == 2

    def test_reset_health_closes_circuit(self, health):
        orchestrator = make_orchestrator(FakeProvider("openai", fail=True), health=health)
        for _ in range(2):
            with pytest.raises(AIGenerationFailed):
                asyncio.run(orchestrator.generate("x"))
        orchestrator.reset_health("openai")
        assert health.state("openai") == CircuitState.CLOSED


# ── Caching ───────────────────────────────────────────

class TestCaching:
    def test_cache_hit_skips_providers(self):
        a = FakeProvider("openai")
        orchestrator = make_orchestrator(a, cache=ResponseCache())

        first = asyncio.run(orchestrator.generate("Same   prompt"))
        second = asyncio.run(orchestrator.generate("Same prompt"))

        assert a.calls == 1
        assert second.cached is True
        assert second.text == first.text
        assert second.provider == "openai"

    def test_different_options_miss(self):
        a = FakeProvider("openai")
        orchestrator = make_orchestrator(a, cache=ResponseCache())
        asyncio.run(orchestrator.generate("p", options=GenerateOptions(temperature=0.1)))
        asyncio.run(orchestrator.generate("p", options=GenerateOptions(temperature=0.9)))
        assert a.calls == 2

    def test_different_system_prompt_misses(self):
        a = FakeProvider("openai")
        orchestrator = make_orchestrator(a, cache=ResponseCache())
        asyncio.run(orchestrator.generate("same prompt", options=GenerateOptions(system="Answer as a pirate")))
        second = asyncio.run(
            orchestrator.generate("same prompt", options=GenerateOptions(system="Answer as a lawyer"))
        )
        assert a.calls == 2
        assert second.cached is False
        assert [o.system for o in a.options] == ["Answer as a pirate", "Answer as a lawyer"]

    def test_cache_can_be_bypassed(self):
        a = FakeProvider("openai")
        orchestrator = make_orchestrator(a, cache=ResponseCache())
        asyncio.run(orchestrator.generate("p"))
        asyncio.run(orchestrator.generate("p", options=GenerateOptions(use_cache=False)))
        assert a.calls == 2

    def test_failures_are_not_cached(self):
        a = FakeProvider("openai", fail=True)
        orchestrator = make_orchestrator(a, cache=ResponseCache())
        with pytest.raises(AIGenerationFailed):
            asyncio.run(orchestrator.generate("p"))
        a.fail = False
        result = asyncio.run(orchestrator.generate("p"))
        assert result.cached is False

    def test_clear_cache(self):
        a = FakeProvider("openai")
        orchestrator = make_orchestrator(a, cache=ResponseCache())
        asyncio.run(orchestrator.generate("p"))
        assert orchestrator.clear_cache() == 1
        asyncio.run(orchestrator.generate("p"))
        assert a.calls == 2


# ── Structured output ─────────────────────────────────

class TestStructuredOutput:
    def test_fenced_json_is_parsed(self):
        a = FakeProvider("openai", responses=['```json\n{"summary": "ok", "score": 3}\n```'])
        result = asyncio.run(make_orchestrator(a).generate("p", schema=Summary))
        assert result.data == {"summary": "ok", "score": 3}
        assert a.options[0].json_mode is True

    def test_no_json_mode_for_models_without_structured_output(self):
        a = FakeProvider("openai", responses=['{"summary": "ok", "score": 3}'])
        a.model_id = "gpt-3.5-turbo"
        result = asyncio.run(make_orchestrator(a).generate("p", schema=Summary))
        assert a.options[0].json_mode is False
        assert result.data == {"summary": "ok", "score": 3}

    def test_json_mode_follows_requested_model(self):
        a = FakeProvider("openai", responses=['{"summary": "ok", "score": 3}'])
        orchestrator = make_orchestrator(a)
        asyncio.run(orchestrator.generate("p", schema=Summary, options=GenerateOptions(model="gpt-3.5-turbo")))
        asyncio.run(orchestrator.generate("p", schema=Summary, options=GenerateOptions(model="gpt-4o")))
        assert [o.json_mode for o in a.options] == [False, True]

    def test_mismatch_is_retried_once(self):
        a = FakeProvider("openai", responses=["not json", '{"summary": "ok"}'])
        result = asyncio.run(make_orchestrator(a).generate("p", schema={"required": ["summary"]}))
        assert a.calls == 2
        assert result.data == {"summary": "ok"}

    def test_repeated_mismatch_falls_back(self):
        a = FakeProvider("openai", responses=["nope", "still nope"])
        b = FakeProvider("anthropic", responses=['{"summary": "fine", "score": 1}'])
        result = asyncio.run(make_orchestrator(a, b).generate("p", schema=Summary))
        assert a.calls == 2
        assert result.provider == "anthropic"
        assert result.failed_attempts[0].kind == "malformed_output"

    def test_strip_code_fences(self):
        assert strip_code_fences("```\n{}\n```") == "{}"
        assert strip_code_fences("plain") == "plain"


# ── Admin helpers ─────────────────────────────────────

class TestAdmin:
    def test_validate_providers(self):
        orchestrator = make_orchestrator(
            FakeProvider("openai"), FakeProvider("anthropic", fail=True)
        )
        assert asyncio.run(orchestrator.validate_providers()) == ["openai"]
        assert orchestrator.health.snapshot("anthropic").total_failures == 0

    def test_validate_providers_survives_unexpected_errors(self):
        class MisconfiguredProvider(FakeProvider):
            async def complete(self, prompt, options):
                raise RuntimeError("credentials not found")

        orchestrator = make_orchestrator(FakeProvider("openai"), MisconfiguredProvider("gemini"))
        assert asyncio.run(orchestrator.validate_providers()) == ["openai"]

    def test_status(self):
        orchestrator = make_orchestrator(FakeProvider("openai"), cache=ResponseCache())
        asyncio.run(orchestrator.generate("p"))
        status = orchestrator.status()
        assert status["priority"] == ["openai"]
        assert status["providers"]["openai"]["circuit"] == "closed"
        assert status["cache"]["size"] == 1
        assert status["usage"]["by_provider"]["openai"] == 1

    def test_from_settings(self, settings):
        orchestrator = AIOrchestrator.from_settings(
            settings, providers={"gemini": FakeProvider("gemini"), "openai": FakeProvider("openai")}
        )
        assert orchestrator.priority == ["openai", "gemini"]
        assert orchestrator.cache is not None


# ── Registry and prompts ──────────────────────────────

class TestRegistry:
    def test_aliases(self):
        assert parse_provider("Claude") == ProviderName.ANTHROPIC
        assert parse_provider("google") == ProviderName.GEMINI

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            parse_provider("watson")

    def test_model_provider_mismatch(self):
        with pytest.raises(ValueError):
            validate_model_provider("gpt-4o", "anthropic")
        assert validate_model_provider("gpt-4o", "auto").provider == ProviderName.OPENAI


class TestPromptTemplates:
    def test_render_variables(self):
        variables = PromptTemplates.build_variables(
            {"name": "Ada", "q1": "business"}, campaign_title="Quiz", lead_score=80, lead_quality="hot"
        )
        text = PromptTemplates.render("Hi {{firstName}}, {{leadScore}}/{{ leadQuality }} in {{campaignTitle}}", variables)
        assert text == "Hi Ada, 80/hot in Quiz"

    def test_unknown_placeholder_kept(self):
        assert PromptTemplates.render("{{mystery}}", {}) == "{{mystery}}"

    def test_default_template(self):
        variables = PromptTemplates.build_variables({"q1": "a"})
        text = PromptTemplates.render(None, variables)
        assert "there" in text
        assert '"q1": "a"' in text
