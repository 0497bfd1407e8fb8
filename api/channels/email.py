"""
Email delivery for manager notifications.

SendGrid is the primary provider and AWS SES the fallback. ``to`` may
hold several comma-separated addresses so one escalation reaches every
sales manager.
"""

import asyncio
import logging
import re
from typing import List, Optional

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from .base import ChannelProvider, ChannelMessage, ChannelResponse

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Carrera Cars - Notificación"

_TAG = re.compile(r"<[^>]+>")


def parse_recipients(value: Optional[str]) -> List[str]:
    return [addr.strip() for addr in (value or "").split(",") if addr.strip()]


def html_to_text(html: str) -> str:
    """Plain-text alternative for clients that do not render HTML."""
    text = re.sub(r"</p>|<br\s*/?>|</h\d>", "\n", html, flags=re.IGNORECASE)
    return "\n".join(line.strip() for line in _TAG.sub("", text).splitlines() if line.strip())


class SendGridEmail(ChannelProvider):
    """Email via the SendGrid v3 mail API."""

    BASE_URL = "https://api.sendgrid.com/v3/mail/send"

    def __init__(self, api_key: str, from_email: str, from_name: str = "Carrera Cars", timeout: float = 10.0):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    def _payload(self, message: ChannelMessage) -> dict:
        return {
            "personalizations": [{"to": [{"email": addr} for addr in parse_recipients(message.to)]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": message.subject or DEFAULT_SUBJECT,
            "content": [
                {"type": "text/plain", "value": html_to_text(message.content)},
                {"type": "text/html", "value": message.content},
            ],
        }

    async def send_message(self, message: ChannelMessage) -> ChannelResponse:
        if not parse_recipients(message.to):
            return ChannelResponse(success=False, error="No recipients")

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    self.BASE_URL,
                    json=self._payload(message),
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            logger.error(f"SendGrid send failed: {e}")
            return ChannelResponse(success=False, error=str(e))

        # SendGrid answers 202 Accepted with an empty body
        if resp.status_code != 202:
            logger.error(f"SendGrid rejected email: {resp.status_code} {resp.text}")
            return ChannelResponse(success=False, error=f"SendGrid error {resp.status_code}")
        return ChannelResponse(success=True, message_id=resp.headers.get("X-Message-Id"))

    async def health_check(self) -> bool:
        return bool(self.api_key)


class SESEmail(ChannelProvider):
    """Email via AWS SES using the ambient AWS credentials."""

    def __init__(self, region: str = "us-east-1", from_email: str = ""):
        self.region = region
        self.from_email = from_email
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("ses", region_name=self.region)
        return self._client

    async def send_message(self, message: ChannelMessage) -> ChannelResponse:
        recipients = parse_recipients(message.to)
        if not recipients:
            return ChannelResponse(success=False, error="No recipients")

        try:
            resp = await asyncio.to_thread(
                self.client.send_email,
                Source=self.from_email,
                Destination={"ToAddresses": recipients},
                Message={
                    "Subject": {"Data": message.subject or DEFAULT_SUBJECT, "Charset": "UTF-8"},
                    "Body": {
                        "Text": {"Data": html_to_text(message.content), "Charset": "UTF-8"},
                        "Html": {"Data": message.content, "Charset": "UTF-8"},
                    },
                },
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"SES send failed: {e}")
            return ChannelResponse(success=False, error=str(e))
        return ChannelResponse(success=True, message_id=resp.get("MessageId"))

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self.client.get_send_quota)
            return True
        except (ClientError, BotoCoreError):
            return False


class EmailRouter:
    """Tries the primary provider, then the fallback."""

    def __init__(self, primary: Optional[ChannelProvider], fallback: Optional[ChannelProvider] = None):
        self.providers = [p for p in (primary, fallback) if p is not None]

    async def send(self, message: ChannelMessage) -> ChannelResponse:
        if not self.providers:
            return ChannelResponse(success=False, error="No email provider configured")

        result = None
        for i, provider in enumerate(self.providers):
            if i:
                logger.warning(f"Email via {type(self.providers[i - 1]).__name__} failed, trying fallback")
            result = await provider.send_message(message)
            if result.success:
                break
        return result
