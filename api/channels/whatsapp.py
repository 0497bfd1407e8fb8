"""
WhatsApp Channel Provider for the Carrera Cars lead bot.

Sends text replies and read receipts through the Meta WhatsApp Cloud API.
"""

import logging
import re

import httpx

from .base import ChannelProvider, ChannelMessage, ChannelResponse

logger = logging.getLogger(__name__)


def to_wa_id(phone: str) -> str:
    """Cloud API recipients are digits only, country code first."""
    return re.sub(r"\D", "", phone or "")


class MetaCloudWhatsApp(ChannelProvider):
    """WhatsApp via Meta Cloud API."""

    BASE_URL = "https://graph.facebook.com"

    def __init__(self, api_token: str, phone_number_id: str, api_version: str = "v21.0", timeout: float = 10.0):
        self.api_token = api_token
        self.phone_number_id = phone_number_id
        self.api_version = api_version
        self.timeout = timeout

    @property
    def _messages_url(self) -> str:
        return f"{self.BASE_URL}/{self.api_version}/{self.phone_number_id}/messages"

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_token}", "Content-Type": "application/json"}

    async def send_message(self, message: ChannelMessage) -> ChannelResponse:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to_wa_id(message.to),
            "type": "text",
            "text": {"preview_url": False, "body": message.content},
        }
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self._messages_url, json=payload, headers=self._headers, timeout=self.timeout)
                resp.raise_for_status()
                data = resp.json()
                msg_id = (data.get("messages") or [{}])[0].get("id")
                return ChannelResponse(success=True, message_id=msg_id)
        except Exception as e:
            logger.error(f"Meta WhatsApp send failed: {e}", extra={"to": message.to})
            return ChannelResponse(success=False, error=str(e))

    async def mark_read(self, message_id: str) -> ChannelResponse:
        payload = {
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": message_id,
        }
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self._messages_url, json=payload, headers=self._headers, timeout=self.timeout)
                resp.raise_for_status()
                return ChannelResponse(success=True, message_id=message_id)
        except Exception as e:
            logger.warning(f"Meta WhatsApp mark-read failed for {message_id}: {e}")
            return ChannelResponse(success=False, message_id=message_id, error=str(e))

    async def health_check(self) -> bool:
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(
                    f"{self.BASE_URL}/{self.api_version}/{self.phone_number_id}",
                    headers={"Authorization": f"Bearer {self.api_token}"},
                    timeout=5,
                )
                return resp.status_code == 200
        except httpx.HTTPError:
            return False
