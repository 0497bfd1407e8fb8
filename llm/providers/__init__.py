"""
LLM Provider implementations.
"""

from .base import GenerationProvider, GenerationError, HistoryMessage
from .bedrock import BedrockProvider
from .openai_provider import OpenAIProvider

__all__ = [
    "GenerationProvider",
    "GenerationError",
    "HistoryMessage",
    "BedrockProvider",
    "OpenAIProvider",
]
