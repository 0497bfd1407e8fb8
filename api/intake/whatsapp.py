"""
WhatsApp webhook intake for the Carrera Cars lead bot.

Handles contacts (lead creation and welcome), text messages (conversation
turns) and delivery-status callbacks from the WhatsApp Cloud API.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.repositories import MessageRepository
from funnel.states import MessageStatus, parse_enum
from llm.orchestrator import ConversationOrchestrator, InboundMessage, DEFAULT_LEAD_NAME
from .base import WebhookIntake, WorkItem, SUCCEEDED, SKIPPED

logger = logging.getLogger(__name__)


def to_phone(wa_id: str) -> str:
    wa_id = str(wa_id).strip()
    return wa_id if wa_id.startswith("+") else f"+{wa_id}"


class WhatsAppIntake(WebhookIntake):
    """Intake for ``whatsapp_business_account`` deliveries."""

    channel = "whatsapp"
    event_type = "whatsapp_incoming"
    expected_object = "whatsapp_business_account"
    accepted_fields = frozenset({"messages"})

    def __init__(
        self,
        verify_token: str,
        orchestrator: ConversationOrchestrator,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        welcome_enabled: bool = True,
    ):
        super().__init__(verify_token, session_factory)
        self.orchestrator = orchestrator
        self.welcome_enabled = welcome_enabled

    def items_from_change(self, value: Dict[str, Any]) -> Iterator[WorkItem]:
        contacts = value.get("contacts") or []
        names = {
            str(c.get("wa_id")): (c.get("profile") or {}).get("name")
            for c in contacts if isinstance(c, dict)
        }
        # Contacts first so a new lead exists before its first message
        for contact in contacts:
            yield WorkItem("contact", contact)
        for message in value.get("messages") or []:
            yield WorkItem("message", message, {"names": names})
        for status in value.get("statuses") or []:
            yield WorkItem("status", status)

    async def handle_contact(self, session: AsyncSession, item: WorkItem) -> str:
        contact = item.payload
        phone = to_phone(contact["wa_id"])
        name = (contact.get("profile") or {}).get("name") or DEFAULT_LEAD_NAME

        lead, created = await self.orchestrator.resolve_lead(session, phone, name)
        if created and self.welcome_enabled:
            await self.orchestrator.welcome(session, lead)
        return SUCCEEDED if created else SKIPPED

    async def handle_message(self, session: AsyncSession, item: WorkItem) -> str:
        message = item.payload
        sender = message["from"]
        body = ((message.get("text") or {}).get("body") or "").strip()
        if message.get("type", "text") != "text" or not body:
            logger.info(f"Skipping non-text WhatsApp message {message.get('id')} ({message.get('type')})")
            return SKIPPED

        timestamp = message.get("timestamp")
        result = await self.orchestrator.handle_inbound(session, InboundMessage(
            phone=to_phone(sender),
            text=body,
            name=item.context.get("names", {}).get(str(sender)),
            external_id=message.get("id"),
            transport_timestamp=datetime.utcfromtimestamp(int(timestamp)) if timestamp else None,
        ))
        return SKIPPED if result.duplicate else SUCCEEDED

    async def handle_status(self, session: AsyncSession, item: WorkItem) -> str:
        status_item = item.payload
        message_id = status_item["id"]
        status = parse_enum(MessageStatus, status_item.get("status"))
        if status is None:
            logger.info(f"Ignoring unknown delivery status {status_item.get('status')!r} for {message_id}")
            return SKIPPED

        error_message = None
        errors = status_item.get("errors") or []
        if errors:
            first = errors[0]
            error_message = first.get("message") or first.get("title") or str(first)

        updated = await MessageRepository(session).update_status(message_id, status.value, error_message)
        if not updated:
            logger.debug(f"No stored message for delivery status {message_id}")
        return SUCCEEDED
