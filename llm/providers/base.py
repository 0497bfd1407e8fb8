"""
Generation gateway interface for the Carrera Cars lead bot.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

logger = logging.getLogger(__name__)


class GenerationError(Exception):
    """Model call failed or produced no text."""


@dataclass
class HistoryMessage:
    """One prior turn of the conversation."""
    role: str  # user | assistant
    content: str


class GenerationProvider(ABC):
    """Abstract chat-completion provider."""

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        history: List[HistoryMessage],
        new_message: str,
    ) -> str:
        """Return the model's reply text. Raises GenerationError."""
        ...

    @staticmethod
    def build_messages(history: List[HistoryMessage], new_message: str) -> List[dict]:
        """History plus the new user message, with same-role runs merged."""
        messages: List[dict] = []
        for msg in list(history) + [HistoryMessage(role="user", content=new_message)]:
            if not msg.content:
                continue
            if messages and messages[-1]["role"] == msg.role:
                messages[-1]["content"] += f"\n{msg.content}"
            else:
                messages.append({"role": msg.role, "content": msg.content})
        return messages
