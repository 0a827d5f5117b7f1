"""
Google Gemini provider adapter.
"""

import asyncio
import logging
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from ..errors import ProviderError, ProviderMalformedOutput
from .base import BaseProvider, CompletionOptions

logger = logging.getLogger(__name__)


class GeminiProvider(BaseProvider):
    """Gemini via the google-generativeai SDK."""

    name = "gemini"
    DEFAULT_MODEL = "gemini-1.5-flash"

    def __init__(self, api_key: Optional[str] = None, model_id: str = DEFAULT_MODEL, model=None):
        super().__init__(model_id)
        if model is not None:
            self._model = model
        else:
            if api_key:
                genai.configure(api_key=api_key)
            self._model = genai.GenerativeModel(model_id)

        logger.info(f"Gemini provider initialized: {model_id}")

    def _generate(self, prompt: str, options: CompletionOptions) -> str:
        config = genai.types.GenerationConfig(
            temperature=options.temperature,
            max_output_tokens=options.max_tokens,
            top_p=options.top_p,
            response_mime_type="application/json" if options.json_mode else None,
        )
        if options.system:
            prompt = f"{options.system}\n\n{prompt}"
        model = self._model
        if options.model and options.model != self.model_id:
            model = genai.GenerativeModel(options.model)
        response = model.generate_content(prompt, generation_config=config)
        try:
            return response.text
        except ValueError:
            # Raised when the candidate was blocked or carries no text part
            return ""

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        try:
            text = await asyncio.to_thread(self._generate, prompt, options)
        except google_exceptions.GoogleAPIError as e:
            logger.error(f"Gemini generation failed: {e}")
            raise ProviderError(self.name, str(e)) from e

        if not text or not text.strip():
            raise ProviderMalformedOutput(self.name, "empty response")
        return text.strip()
