"""
OpenAI provider adapter.
"""

import logging
from typing import Optional

from openai import AsyncOpenAI, OpenAIError

from ..errors import ProviderError, ProviderMalformedOutput
from .base import BaseProvider, CompletionOptions

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseProvider):
    """
    OpenAI chat-completions adapter.

    Supports the GPT-4 family and GPT-3.5.
    """

    name = "openai"
    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(self, api_key: Optional[str] = None, model_id: str = DEFAULT_MODEL, client=None):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key (falls back to OPENAI_API_KEY)
            model_id: Model ID
            client: Pre-built AsyncOpenAI client
        """
        super().__init__(model_id)
        if client is not None:
            self._client = client
        else:
            self._client = AsyncOpenAI(api_key=api_key) if api_key else AsyncOpenAI()

        logger.info(f"OpenAI provider initialized: {model_id}")

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        messages = []
        if options.system:
            messages.append({"role": "system", "content": options.system})
        messages.append({"role": "user", "content": prompt})

        kwargs = {
            "model": options.model or self.model_id,
            "messages": messages,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if options.top_p is not None:
            kwargs["top_p"] = options.top_p
        if options.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            logger.error(f"OpenAI generation failed: {e}")
            raise ProviderError(self.name, str(e)) from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise ProviderMalformedOutput(self.name, "empty response")
        return content.strip()
