"""
Base class for text-generation provider adapters.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class CompletionOptions:
    """Per-call sampling options passed to an adapter."""
    temperature: float = 0.7
    max_tokens: int = 1000
    top_p: Optional[float] = None
    system: Optional[str] = None
    json_mode: bool = False
    model: Optional[str] = None


class BaseProvider(ABC):
    """
    Abstract provider adapter.

    Adapters turn a prompt into text. Any SDK or transport failure must be
    raised as ProviderError and an empty answer as ProviderMalformedOutput,
    so the orchestrator can treat every provider the same way.
    """

    name: str = "base"

    def __init__(self, model_id: str):
        self.model_id = model_id

    @abstractmethod
    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        """
        Generate text for a prompt.

        Args:
            prompt: Rendered prompt
            options: Sampling options

        Returns:
            Generated text (never empty)
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}:{self.model_id}>"
