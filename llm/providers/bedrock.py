"""
AWS Bedrock provider adapter.
"""

import asyncio
import json
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import ProviderError, ProviderMalformedOutput
from .base import BaseProvider, CompletionOptions

logger = logging.getLogger(__name__)


class BedrockProvider(BaseProvider):
    """
    AWS Bedrock adapter.

    Supports Claude models via Bedrock.
    """

    name = "bedrock"
    DEFAULT_MODEL = "us.anthropic.claude-sonnet-4-20250514-v1:0"

    def __init__(self, model_id: str = DEFAULT_MODEL, region: str = "us-east-1", client=None):
        """
        Initialize Bedrock provider.

        Args:
            model_id: Bedrock model ID
            region: AWS region
            client: Pre-built bedrock-runtime client
        """
        super().__init__(model_id)
        self.region = region
        self._client = client or boto3.client("bedrock-runtime", region_name=region)
        logger.info(f"Bedrock provider initialized: {model_id} in {region}")

    def _invoke(self, prompt: str, options: CompletionOptions) -> str:
        body = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": [
                {
                    "role": "user",
                    "content": [{"type": "text", "text": prompt}]
                }
            ]
        }
        if options.system:
            body["system"] = options.system
        if options.top_p is not None:
            body["top_p"] = options.top_p

        response = self._client.invoke_model(
            modelId=options.model or self.model_id,
            body=json.dumps(body),
            contentType="application/json",
            accept="application/json",
        )
        response_body = json.loads(response["body"].read())

        if response_body.get("content"):
            return response_body["content"][0].get("text", "")
        return ""

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        try:
            text = await asyncio.to_thread(self._invoke, prompt, options)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Bedrock API error: {e}")
            raise ProviderError(self.name, str(e)) from e

        if not text.strip():
            logger.warning("Empty response from Bedrock")
            raise ProviderMalformedOutput(self.name, "empty response")
        return text.strip()
