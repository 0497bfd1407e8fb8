"""
LLM Orchestration Module for the Carrera Cars lead bot.

This module handles:
- LLM provider abstraction (Bedrock, OpenAI)
- Prompt template management
- Extraction of structured lead updates from model output
- The per-message conversation pipeline
"""

from .update_extractor import (
    extract, Reply, ReplyWithUpdate, LeadUpdate, PreferenceUpdate, UPDATE_DELIMITER,
)
from .prompt_templates import PromptTemplates

__all__ = [
    "extract",
    "Reply",
    "ReplyWithUpdate",
    "LeadUpdate",
    "PreferenceUpdate",
    "UPDATE_DELIMITER",
    "PromptTemplates",
]
