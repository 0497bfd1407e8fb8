"""
AWS Bedrock LLM Provider.
"""

import asyncio
import json
import logging
from typing import List

import boto3
from botocore.exceptions import ClientError

from .base import GenerationProvider, GenerationError, HistoryMessage

logger = logging.getLogger(__name__)


class BedrockProvider(GenerationProvider):
    """
    AWS Bedrock LLM provider.

    Supports Claude models via the Bedrock messages API.
    """

    DEFAULT_MODEL = "us.anthropic.claude-sonnet-4-20250514-v1:0"

    def __init__(
        self,
        model_id: str = DEFAULT_MODEL,
        region: str = "us-east-1",
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ):
        """
        Initialize Bedrock provider.

        Args:
            model_id: Bedrock model ID
            region: AWS region
            max_tokens: Maximum tokens for response
            temperature: Generation temperature
        """
        self.model_id = model_id
        self.region = region
        self.max_tokens = max_tokens
        self.temperature = temperature

        self._client = boto3.client("bedrock-runtime", region_name=region)
        logger.info(f"Bedrock provider initialized: {model_id} in {region}")

    async def generate(
        self,
        system_prompt: str,
        history: List[HistoryMessage],
        new_message: str,
    ) -> str:
        messages = self.build_messages(history, new_message)
        # Claude requires the conversation to open with a user turn
        while messages and messages[0]["role"] != "user":
            messages.pop(0)

        body = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": system_prompt,
            "messages": [
                {"role": m["role"], "content": [{"type": "text", "text": m["content"]}]}
                for m in messages
            ],
        }

        try:
            response = await asyncio.to_thread(
                self._client.invoke_model,
                modelId=self.model_id,
                body=json.dumps(body),
                contentType="application/json",
                accept="application/json",
            )
            response_body = json.loads(response["body"].read())
        except ClientError as e:
            logger.error(f"Bedrock API error: {e}")
            raise GenerationError(str(e)) from e
        except Exception as e:
            logger.error(f"Bedrock generation failed: {e}")
            raise GenerationError(str(e)) from e

        text = "".join(
            block.get("text", "") for block in response_body.get("content", [])
            if block.get("type") == "text"
        ).strip()
        if not text:
            raise GenerationError("Empty response from Bedrock")
        return text
