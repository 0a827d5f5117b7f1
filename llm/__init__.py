"""
AI Orchestration Module for the Quiz Lead Pipeline.

This module handles:
- Provider abstraction (Anthropic, OpenAI, Gemini, Bedrock)
- Response caching and provider circuit breaking
- Prompt template rendering
"""

from .cache import CacheEntry, ResponseCache, fingerprint
from .errors import (
    AIGenerationFailed,
    ProviderAttemptError,
    ProviderError,
    ProviderMalformedOutput,
    ProviderTimeout,
)
from .health import CircuitState, HealthTracker, ProviderHealth
from .orchestrator import AIOrchestrator, GenerateOptions, GenerationResult, build_providers
from .prompt_templates import PromptTemplates

__all__ = [
    "AIGenerationFailed",
    "AIOrchestrator",
    "CacheEntry",
    "CircuitState",
    "GenerateOptions",
    "GenerationResult",
    "HealthTracker",
    "PromptTemplates",
    "ProviderAttemptError",
    "ProviderError",
    "ProviderHealth",
    "ProviderMalformedOutput",
    "ProviderTimeout",
    "ResponseCache",
    "build_providers",
    "fingerprint",
]
