"""
LLM Provider implementations.
"""

from .anthropic_provider import AnthropicProvider
from .base import BaseProvider, CompletionOptions
from .bedrock import BedrockProvider
from .gemini_provider import GeminiProvider
from .openai_provider import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "BedrockProvider",
    "CompletionOptions",
    "GeminiProvider",
    "OpenAIProvider",
]
