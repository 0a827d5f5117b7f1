"""
Model registry for the Quiz Lead Pipeline.

Maps model identifiers to their provider and capabilities. Requested models
are routed to the provider that serves them, and the orchestrator only asks
for a JSON response format from models that support one.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class ProviderName(str, Enum):
    """Supported text-generation providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    BEDROCK = "bedrock"


@dataclass(frozen=True)
class ModelInfo:
    """Capability metadata for one model."""
    model_id: str
    provider: ProviderName
    supports_structured: bool = True
    description: str = ""


_MODELS: List[ModelInfo] = [
    # OpenAI
    ModelInfo("gpt-4.1", ProviderName.OPENAI, description="Strong at coding and business analysis"),
    ModelInfo("gpt-4o", ProviderName.OPENAI, description="Fast, multimodal"),
    ModelInfo("gpt-4o-mini", ProviderName.OPENAI, description="Low-cost default for standard assessments"),
    ModelInfo("gpt-4-turbo", ProviderName.OPENAI),
    ModelInfo("gpt-3.5-turbo", ProviderName.OPENAI, supports_structured=False),
    # Anthropic
    ModelInfo("claude-3-5-sonnet-20241022", ProviderName.ANTHROPIC, description="Precise language, good reasoning"),
    ModelInfo("claude-3-7-sonnet-20250219", ProviderName.ANTHROPIC),
    ModelInfo("claude-3-opus-20240229", ProviderName.ANTHROPIC, description="Deep reasoning"),
    ModelInfo("claude-3-5-haiku-20241022", ProviderName.ANTHROPIC),
    # Google
    ModelInfo("gemini-1.5-flash", ProviderName.GEMINI),
    ModelInfo("gemini-1.5-pro", ProviderName.GEMINI),
    ModelInfo("gemini-2.5-flash", ProviderName.GEMINI, description="Very fast, lightweight"),
    ModelInfo("gemini-2.5-pro", ProviderName.GEMINI),
    # Bedrock (Claude)
    ModelInfo("us.anthropic.claude-sonnet-4-20250514-v1:0", ProviderName.BEDROCK),
    ModelInfo("anthropic.claude-3-5-sonnet-20241022-v2:0", ProviderName.BEDROCK),
    ModelInfo("anthropic.claude-3-haiku-20240307-v1:0", ProviderName.BEDROCK),
]

MODEL_REGISTRY: Dict[str, ModelInfo] = {m.model_id: m for m in _MODELS}


def parse_provider(name: str) -> ProviderName:
    """Parse a provider name, accepting a few legacy aliases."""
    aliases = {"chatgpt": "openai", "claude": "anthropic", "google": "gemini"}
    value = aliases.get(name.strip().lower(), name.strip().lower())
    try:
        return ProviderName(value)
    except ValueError:
        raise ValueError(f"Unknown AI provider: {name}")


def get_model_info(model_id: str) -> ModelInfo:
    """Look up a model, raising ValueError if it is not registered."""
    info = MODEL_REGISTRY.get(model_id)
    if info is None:
        raise ValueError(f"Unknown AI model: {model_id}")
    return info


def validate_model_provider(model_id: str, provider: Optional[str]) -> ModelInfo:
    """
    Check that a model exists and belongs to the given provider.

    A provider of None or "auto" accepts any registered model.

    Raises:
        ValueError: unknown model, unknown provider, or mismatch
    """
    info = get_model_info(model_id)
    if provider and provider != "auto":
        expected = parse_provider(provider)
        if info.provider != expected:
            raise ValueError(
                f"Model {model_id} belongs to {info.provider.value}, not {expected.value}"
            )
    return info
