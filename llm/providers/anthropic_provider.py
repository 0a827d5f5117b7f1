"""
Anthropic (Claude) provider adapter.
"""

import asyncio
import logging
from typing import Optional

import anthropic

from ..errors import ProviderError, ProviderMalformedOutput
from .base import BaseProvider, CompletionOptions

logger = logging.getLogger(__name__)


class AnthropicProvider(BaseProvider):
    """Claude via the Anthropic messages API."""

    name = "anthropic"
    DEFAULT_MODEL = "claude-3-5-sonnet-20241022"

    def __init__(self, api_key: Optional[str] = None, model_id: str = DEFAULT_MODEL, client=None):
        super().__init__(model_id)
        self._api_key = api_key
        self._client = client

        logger.info(f"Anthropic provider initialized: {model_id}")

    def _get_client(self) -> anthropic.Anthropic:
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self._api_key) if self._api_key else anthropic.Anthropic()
        return self._client

    def _create(self, prompt: str, options: CompletionOptions) -> str:
        kwargs = {
            "model": options.model or self.model_id,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if options.system:
            kwargs["system"] = options.system
        if options.top_p is not None:
            kwargs["top_p"] = options.top_p

        message = self._get_client().messages.create(**kwargs)
        return "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        try:
            text = await asyncio.to_thread(self._create, prompt, options)
        except anthropic.AnthropicError as e:
            logger.error(f"Anthropic generation failed: {e}")
            raise ProviderError(self.name, str(e)) from e

        if not text.strip():
            raise ProviderMalformedOutput(self.name, "empty response")
        return text.strip()
