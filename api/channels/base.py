"""
Abstract Channel Provider for the Carrera Cars lead bot.

Base class for outbound messaging integrations. Providers report failures
through ChannelResponse instead of raising.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class ChannelMessage:
    """Message to send via a channel."""
    to: str  # Phone number or email
    content: str
    subject: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None


@dataclass
class ChannelResponse:
    """Response from channel send operation."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class ChannelProvider(ABC):
    """Abstract base class for messaging channels."""

    @abstractmethod
    async def send_message(self, message: ChannelMessage) -> ChannelResponse:
        """Send a text message."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if channel is operational."""
        ...
