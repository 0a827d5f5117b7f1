"""
Error types raised by provider adapters and the AI orchestrator.
"""

from dataclasses import dataclass
from typing import Any, Dict, List


class ProviderError(Exception):
    """A provider call failed (error response, transport error, SDK error)."""

    kind = "error"

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class ProviderTimeout(ProviderError):
    """A provider call exceeded its timeout and was abandoned."""

    kind = "timeout"


class ProviderMalformedOutput(ProviderError):
    """A provider answered, but the output was empty or did not match the schema."""

    kind = "malformed_output"


@dataclass
class ProviderAttemptError:
    """One failed provider attempt inside a generate() call."""
    provider: str
    kind: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"provider": self.provider, "kind": self.kind, "message": self.message}


class AIGenerationFailed(Exception):
    """Every candidate provider failed for one generate() call."""

    def __init__(self, errors: List[ProviderAttemptError]):
        self.errors = errors
        if errors:
            detail = "; ".join(f"{e.provider} ({e.kind}): {e.message}" for e in errors)
        else:
            detail = "no provider available"
        super().__init__(f"All providers failed: {detail}")

    def to_dict(self) -> Dict[str, Any]:
        return {"error": "ai_generation_failed", "attempts": [e.to_dict() for e in self.errors]}
