"""
AI Orchestrator for the Quiz Lead Pipeline.

Turns a prompt into generated text using one of several providers, with
response caching, per-call timeouts, provider fallback and circuit breaking.
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, ValidationError

from config.settings import Settings
from monitoring.metrics import record_provider_call

from .cache import ResponseCache, fingerprint
from .errors import (
    AIGenerationFailed,
    ProviderAttemptError,
    ProviderError,
    ProviderMalformedOutput,
    ProviderTimeout,
)
from .health import HealthTracker
from .providers import (
    AnthropicProvider,
    BaseProvider,
    BedrockProvider,
    CompletionOptions,
    GeminiProvider,
    OpenAIProvider,
)
from .registry import MODEL_REGISTRY, parse_provider

logger = logging.getLogger(__name__)

Schema = Union[Type[BaseModel], Dict[str, Any]]

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

VALIDATION_PROMPT = "Reply with the single word: ok"


@dataclass
class GenerateOptions:
    """Per-request overrides for generate()."""
    preferred_provider: Optional[str] = None
    model: Optional[str] = None
    timeout_ms: Optional[int] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    system: Optional[str] = None
    use_cache: bool = True


@dataclass
class GenerationResult:
    """Outcome of a successful generate() call."""
    text: str
    provider: str
    model: str
    latency_ms: float = 0.0
    cached: bool = False
    data: Optional[Dict[str, Any]] = None
    failed_attempts: List[ProviderAttemptError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "text": self.text,
            "provider": self.provider,
            "model": self.model,
            "latency_ms": self.latency_ms,
            "cached": self.cached,
            "data": self.data,
            "failed_attempts": [e.to_dict() for e in self.failed_attempts],
        }


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    return _FENCE_RE.sub("", text.strip()).strip()


def _schema_key(schema: Optional[Schema]) -> Optional[Any]:
    if schema is None:
        return None
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema.model_json_schema()
    return schema


def parse_structured(text: str, schema: Schema, provider: str) -> Dict[str, Any]:
    """
    Parse provider text as JSON and check it against a schema.

    Args:
        text: Raw provider output
        schema: Pydantic model class, or a dict with a "required" key list
            (or plain dict whose keys are the required fields)
        provider: Provider name for error reporting

    Returns:
        The validated JSON object

    Raises:
        ProviderMalformedOutput: Output is not JSON or does not match
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ProviderMalformedOutput(provider, f"invalid JSON: {e}") from e

    if isinstance(schema, type) and issubclass(schema, BaseModel):
        try:
            return schema.model_validate(data).model_dump()
        except ValidationError as e:
            raise ProviderMalformedOutput(provider, f"schema mismatch: {e.error_count()} errors") from e

    if not isinstance(data, dict):
        raise ProviderMalformedOutput(provider, "expected a JSON object")
    if "required" in schema or "properties" in schema:
        required = schema.get("required", [])
    else:
        required = list(schema.keys())
    missing = [key for key in required if key not in data]
    if missing:
        raise ProviderMalformedOutput(provider, f"missing keys: {', '.join(missing)}")
    return data


class AIOrchestrator:
    """
    Multi-provider generation with fallback.

    Flow per request:
    1. Fingerprint the request and serve a cached response if present
    2. Order candidate providers (preferred first, then the priority list),
       skipping providers whose circuit is open
    3. Call each candidate under a timeout until one succeeds
    4. Record health for every attempt and cache the winning response
    """

    def __init__(
        self,
        providers: Dict[str, BaseProvider],
        priority: Optional[List[str]] = None,
        cache: Optional[ResponseCache] = None,
        health: Optional[HealthTracker] = None,
        default_timeout_ms: int = 30000,
        default_temperature: float = 0.7,
        default_max_tokens: int = 1000,
    ):
        """
        Initialize orchestrator.

        Args:
            providers: Adapters keyed by provider name
            priority: Static fallback order (defaults to insertion order)
            cache: Response cache (None disables caching)
            health: Health tracker shared across calls
            default_timeout_ms: Timeout when the request sets none
            default_temperature: Temperature when the request sets none
            default_max_tokens: Max tokens when the request sets none
        """
        self.providers = providers
        self.priority = [p for p in (priority or list(providers)) if p in providers]
        # Providers missing from the priority list still serve as last resort
        self.priority += [p for p in providers if p not in self.priority]
        self.cache = cache
        self.health = health or HealthTracker()
        self.default_timeout_ms = default_timeout_ms
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens

        self._usage = {
            "requests": 0,
            "cache_hits": 0,
            "failures": 0,
            "fallbacks": 0,
            "by_provider": {name: 0 for name in providers},
        }

        logger.info(f"AI orchestrator initialized with providers: {self.priority}")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        providers: Optional[Dict[str, BaseProvider]] = None,
    ) -> "AIOrchestrator":
        """Build an orchestrator (and its cache) from application settings."""
        cache = None
        if settings.ai_cache_enabled:
            cache = ResponseCache(
                default_ttl=settings.ai_cache_ttl_seconds,
                max_entries=settings.ai_cache_max_entries,
            )
        return cls(
            providers=providers if providers is not None else build_providers(settings),
            priority=settings.provider_priority_list,
            cache=cache,
            health=HealthTracker(
                failure_threshold=settings.circuit_failure_threshold,
                cooldown_seconds=settings.circuit_cooldown_seconds,
            ),
            default_timeout_ms=settings.ai_timeout_ms,
            default_temperature=settings.temperature,
            default_max_tokens=settings.max_tokens,
        )

    def provider_order(self, preferred: Optional[str] = None) -> List[str]:
        """Provider names in the order they are tried: preferred first, then priority."""
        order = []
        if preferred and preferred in self.providers:
            order.append(preferred)
        order += [p for p in self.priority if p not in order]
        return order

    def _resolve_preferred(self, options: GenerateOptions) -> Optional[str]:
        if options.preferred_provider and options.preferred_provider != "auto":
            return parse_provider(options.preferred_provider).value
        if options.model and options.model in MODEL_REGISTRY:
            return MODEL_REGISTRY[options.model].provider.value
        return None

    def _model_for(self, provider: BaseProvider, requested: Optional[str]) -> Optional[str]:
        # A requested model only applies to the provider that serves it
        info = MODEL_REGISTRY.get(requested) if requested else None
        if info is not None and info.provider.value == provider.name:
            return requested
        return None

    @staticmethod
    def _json_mode(model_id: str, schema: Optional[Schema]) -> bool:
        # Unregistered models are assumed to accept a JSON response format
        if schema is None:
            return False
        info = MODEL_REGISTRY.get(model_id)
        return info is None or info.supports_structured

    async def generate(
        self,
        prompt: str,
        schema: Optional[Schema] = None,
        options: Optional[GenerateOptions] = None,
    ) -> GenerationResult:
        """
        Generate text for a prompt.

        Args:
            prompt: Rendered prompt
            schema: Optional structured-output schema
            options: Per-request overrides

        Returns:
            GenerationResult from the cache or the first successful provider

        Raises:
            AIGenerationFailed: Every candidate failed or none was available
        """
        options = options or GenerateOptions()
        temperature = options.temperature if options.temperature is not None else self.default_temperature
        max_tokens = options.max_tokens or self.default_max_tokens
        timeout = (options.timeout_ms or self.default_timeout_ms) / 1000.0

        self._usage["requests"] += 1

        fp = fingerprint(prompt, options.model, {
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": options.top_p,
            "system": options.system,
            "schema": _schema_key(schema),
        })
        if self.cache is not None and options.use_cache:
            entry = self.cache.get(fp)
            if entry is not None:
                self._usage["cache_hits"] += 1
                hit: GenerationResult = entry.response
                return GenerationResult(
                    text=hit.text,
                    provider=hit.provider,
                    model=hit.model,
                    latency_ms=0.0,
                    cached=True,
                    data=hit.data,
                )

        errors: List[ProviderAttemptError] = []
        for name in self.provider_order(self._resolve_preferred(options)):
            # Checked right before the call: admitting a half-open provider claims its trial slot
            if not self.health.is_available(name):
                continue
            provider = self.providers[name]
            model = self._model_for(provider, options.model)
            completion = CompletionOptions(
                temperature=temperature,
                max_tokens=max_tokens,
                top_p=options.top_p,
                system=options.system,
                json_mode=self._json_mode(model or provider.model_id, schema),
                model=model,
            )

            start = time.perf_counter()
            try:
                text, data = await self._attempt(provider, prompt, completion, timeout, schema)
            except asyncio.CancelledError:
                self.health.release_trial(name)
                raise
            except ProviderError as e:
                elapsed = time.perf_counter() - start
                self.health.record_failure(name, e.message)
                record_provider_call(name, e.kind, elapsed)
                errors.append(ProviderAttemptError(provider=name, kind=e.kind, message=e.message))
                logger.warning(f"Provider {name} failed ({e.kind}): {e.message}")
                continue
            except Exception as e:
                elapsed = time.perf_counter() - start
                self.health.record_failure(name, str(e))
                record_provider_call(name, "error", elapsed)
                errors.append(ProviderAttemptError(provider=name, kind="error", message=str(e)))
                logger.exception(f"Unexpected error from provider {name}")
                continue

            elapsed = time.perf_counter() - start
            self.health.record_success(name)
            record_provider_call(name, "success", elapsed)
            self._usage["by_provider"][name] = self._usage["by_provider"].get(name, 0) + 1
            if errors:
                self._usage["fallbacks"] += 1

            result = GenerationResult(
                text=text,
                provider=name,
                model=completion.model or provider.model_id,
                latency_ms=round(elapsed * 1000, 2),
                data=data,
                failed_attempts=errors,
            )
            if self.cache is not None and options.use_cache:
                self.cache.put(fp, result)
            logger.info(f"Generated response via {name} in {result.latency_ms}ms")
            return result

        self._usage["failures"] += 1
        failure = AIGenerationFailed(errors)
        logger.error(str(failure))
        raise failure

    async def _attempt(
        self,
        provider: BaseProvider,
        prompt: str,
        completion: CompletionOptions,
        timeout: float,
        schema: Optional[Schema],
    ) -> Tuple[str, Optional[Dict[str, Any]]]:
        """Call one provider; a schema mismatch is retried once on the same provider."""
        tries = 2 if schema is not None else 1
        for attempt in range(1, tries + 1):
            try:
                text = await asyncio.wait_for(provider.complete(prompt, completion), timeout)
            except asyncio.TimeoutError as e:
                raise ProviderTimeout(provider.name, f"timed out after {timeout:.1f}s") from e

            if schema is None:
                return text, None
            try:
                return text, parse_structured(text, schema, provider.name)
            except ProviderMalformedOutput as e:
                if attempt == tries:
                    raise
                logger.warning(f"Structured output from {provider.name} rejected, retrying: {e.message}")
        raise ProviderMalformedOutput(provider.name, "no output")

    async def validate_providers(self) -> List[str]:
        """
        Round-trip a tiny prompt through every adapter.

        Intended for startup checks. Results do not touch health counters.

        Returns:
            Names of providers that answered
        """
        healthy = []
        options = CompletionOptions(temperature=0.0, max_tokens=10)
        timeout = self.default_timeout_ms / 1000.0
        for name, provider in self.providers.items():
            try:
                await asyncio.wait_for(provider.complete(VALIDATION_PROMPT, options), timeout)
                healthy.append(name)
            except asyncio.TimeoutError:
                logger.warning(f"Provider {name} validation timed out")
            except ProviderError as e:
                logger.warning(f"Provider {name} validation failed: {e.message}")
            except Exception as e:
                logger.warning(f"Provider {name} validation raised {type(e).__name__}: {e}")
        logger.info(f"Provider validation: {len(healthy)}/{len(self.providers)} healthy")
        return healthy

    def reset_health(self, provider: Optional[str] = None):
        self.health.reset(provider)

    def clear_cache(self) -> int:
        if self.cache is None:
            return 0
        return self.cache.invalidate_all()

    def status(self) -> Dict[str, Any]:
        """Provider health, cache statistics and usage counters."""
        providers = {}
        for name in self.priority:
            snapshot = self.health.snapshot(name).to_dict()
            snapshot["circuit"] = self.health.state(name).value
            snapshot["model"] = self.providers[name].model_id
            providers[name] = snapshot
        return {
            "priority": self.priority,
            "providers": providers,
            "cache": self.cache.stats() if self.cache is not None else None,
            "usage": {**self._usage, "by_provider": dict(self._usage["by_provider"])},
        }


def build_providers(settings: Settings) -> Dict[str, BaseProvider]:
    """Instantiate adapters for every provider with credentials configured."""
    providers: Dict[str, BaseProvider] = {}
    if settings.anthropic_api_key:
        providers["anthropic"] = AnthropicProvider(
            api_key=settings.anthropic_api_key, model_id=settings.anthropic_model
        )
    if settings.openai_api_key:
        providers["openai"] = OpenAIProvider(
            api_key=settings.openai_api_key, model_id=settings.openai_model
        )
    if settings.google_api_key:
        providers["gemini"] = GeminiProvider(
            api_key=settings.google_api_key, model_id=settings.gemini_model
        )
    if settings.bedrock_enabled:
        providers["bedrock"] = BedrockProvider(
            model_id=settings.bedrock_llm_model_id, region=settings.aws_region
        )
    if not providers:
        logger.warning("No AI providers configured; AI jobs will fail until one is added")
    return providers
