"""
OpenAI LLM Provider.
"""

import logging
from typing import List, Optional

from openai import AsyncOpenAI

from .base import GenerationProvider, GenerationError, HistoryMessage

logger = logging.getLogger(__name__)


class OpenAIProvider(GenerationProvider):
    """
    OpenAI LLM provider.

    Supports GPT-4 class chat models.
    """

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_id: str = DEFAULT_MODEL,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ):
        self._client = AsyncOpenAI(api_key=api_key) if api_key else AsyncOpenAI()
        self.model_id = model_id
        self.max_tokens = max_tokens
        self.temperature = temperature

        logger.info(f"OpenAI provider initialized: {model_id}")

    async def generate(
        self,
        system_prompt: str,
        history: List[HistoryMessage],
        new_message: str,
    ) -> str:
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(self.build_messages(history, new_message))

        try:
            response = await self._client.chat.completions.create(
                model=self.model_id,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as e:
            logger.error(f"OpenAI generation failed: {e}")
            raise GenerationError(str(e)) from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise GenerationError("Empty response from OpenAI")
        return content.strip()
