"""
Repository classes for the Carrera Cars lead bot data access layer.

Each repository encapsulates CRUD operations for a specific model.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Campaign, Lead, LeadEvent, LeadPreference, ConversationMessage,
    KnowledgeDocument, InventoryItem, WebhookLog,
)
from funnel.states import MessageDirection, WebhookStatus

logger = logging.getLogger(__name__)


def _jsonable(details: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for k, v in details.items():
        if isinstance(v, datetime):
            v = v.isoformat()
        elif hasattr(v, "value"):
            v = v.value
        out[k] = v
    return out


class LeadRepository:
    """Data access for leads and lead events."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Lead:
        lead = Lead(**kwargs)
        self.session.add(lead)
        await self.session.flush()
        self.session.add(LeadEvent(
            lead_id=lead.id,
            event_type="created",
            details_json={"status": lead.status, "phone": lead.phone, "campaign_id": lead.campaign_id},
        ))
        await self.session.flush()
        return lead

    async def update(self, lead: Lead, **changes) -> Lead:
        """Apply changes to a loaded lead and record an update event."""
        if not changes:
            return lead
        for k, v in changes.items():
            if hasattr(lead, k):
                setattr(lead, k, v.value if hasattr(v, "value") else v)
        self.session.add(LeadEvent(
            lead_id=lead.id,
            event_type="updated",
            details_json=_jsonable(changes),
        ))
        await self.session.flush()
        return lead

    async def add_event(self, lead_id: str, event_type: str, details: Optional[Dict[str, Any]] = None) -> LeadEvent:
        event = LeadEvent(lead_id=lead_id, event_type=event_type, details_json=_jsonable(details or {}))
        self.session.add(event)
        await self.session.flush()
        return event

    async def get_by_id(self, lead_id: str) -> Optional[Lead]:
        result = await self.session.execute(
            select(Lead).where(Lead.id == lead_id)
        )
        return result.scalar_one_or_none()

    async def get_by_phone(self, phone: str) -> Optional[Lead]:
        result = await self.session.execute(
            select(Lead).where(Lead.phone == phone)
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[Lead]:
        result = await self.session.execute(
            select(Lead).where(Lead.email == email)
        )
        return result.scalar_one_or_none()

    async def list_due_for_follow_up(
        self,
        statuses: Iterable[str],
        now: datetime,
        stale_before: datetime,
        max_follow_ups: int,
        limit: int = 100,
    ) -> List[Lead]:
        """Leads with a phone in an active status whose follow-up is due."""
        due = or_(
            Lead.next_follow_up_date <= now,
            and_(Lead.next_follow_up_date.is_(None), Lead.last_message_at <= stale_before),
        )
        result = await self.session.execute(
            select(Lead)
            .where(
                Lead.phone.is_not(None),
                Lead.status.in_(list(statuses)),
                Lead.follow_up_count < max_follow_ups,
                due,
            )
            .order_by(Lead.last_message_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_exhausted(
        self,
        statuses: Iterable[str],
        max_follow_ups: int,
        silent_before: datetime,
    ) -> List[Lead]:
        """Leads that used up their follow-ups and stayed silent."""
        result = await self.session.execute(
            select(Lead).where(
                Lead.status.in_(list(statuses)),
                Lead.follow_up_count >= max_follow_ups,
                or_(
                    Lead.last_message_at < silent_before,
                    and_(Lead.last_message_at.is_(None), Lead.created_at < silent_before),
                ),
            )
        )
        return list(result.scalars().all())


class PreferenceRepository:
    """Data access for the vehicle preferences gathered in conversation."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_lead(self, lead_id: str) -> Optional[LeadPreference]:
        result = await self.session.execute(
            select(LeadPreference).where(LeadPreference.lead_id == lead_id)
        )
        return result.scalar_one_or_none()

    async def upsert(self, lead_id: str, **changes) -> LeadPreference:
        """Create the lead's preference row or overwrite the given columns."""
        pref = await self.get_by_lead(lead_id)
        if pref is None:
            pref = LeadPreference(lead_id=lead_id, **changes)
            self.session.add(pref)
            logger.info(f"Created preferences for lead {lead_id}: {sorted(changes)}")
        else:
            for k, v in changes.items():
                setattr(pref, k, v)
            logger.info(f"Updated preferences for lead {lead_id}: {sorted(changes)}")
        await self.session.flush()
        return pref


class MessageRepository:
    """Data access for conversation messages."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self,
        lead_id: str,
        direction: str,
        content: str,
        status: str,
        whatsapp_message_id: Optional[str] = None,
        whatsapp_timestamp: Optional[datetime] = None,
        embedding: Optional[List[float]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ConversationMessage:
        msg = ConversationMessage(
            lead_id=lead_id,
            direction=direction,
            content=content,
            status=status,
            whatsapp_message_id=whatsapp_message_id,
            whatsapp_timestamp=whatsapp_timestamp,
            embedding=embedding,
            metadata_json=metadata or {},
        )
        self.session.add(msg)
        await self.session.flush()
        return msg

    async def get_recent(
        self, lead_id: str, limit: int = 10, exclude_id: Optional[str] = None
    ) -> List[ConversationMessage]:
        """Most recent messages for a lead, returned oldest first."""
        q = select(ConversationMessage).where(ConversationMessage.lead_id == lead_id)
        if exclude_id:
            q = q.where(ConversationMessage.id != exclude_id)
        result = await self.session.execute(
            q.order_by(ConversationMessage.created_at.desc()).limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def get_by_whatsapp_id(self, whatsapp_message_id: str) -> Optional[ConversationMessage]:
        result = await self.session.execute(
            select(ConversationMessage)
            .where(ConversationMessage.whatsapp_message_id == whatsapp_message_id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def inbound_exists(self, whatsapp_message_id: str) -> bool:
        result = await self.session.execute(
            select(ConversationMessage.id)
            .where(
                ConversationMessage.whatsapp_message_id == whatsapp_message_id,
                ConversationMessage.direction == MessageDirection.INBOUND.value,
            )
            .limit(1)
        )
        return result.first() is not None

    async def update_status(
        self, whatsapp_message_id: str, status: str, error_message: Optional[str] = None
    ) -> int:
        values: Dict[str, Any] = {"status": status}
        if error_message:
            values["error_message"] = error_message
        result = await self.session.execute(
            update(ConversationMessage)
            .where(ConversationMessage.whatsapp_message_id == whatsapp_message_id)
            .values(**values)
        )
        return result.rowcount or 0


class DocumentRepository:
    """Data access for knowledge documents."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> KnowledgeDocument:
        doc = KnowledgeDocument(**kwargs)
        self.session.add(doc)
        await self.session.flush()
        return doc

    async def get_by_id(self, doc_id: str) -> Optional[KnowledgeDocument]:
        result = await self.session.execute(
            select(KnowledgeDocument).where(KnowledgeDocument.id == doc_id)
        )
        return result.scalar_one_or_none()

    async def get_by_source(
        self, tenant_id: str, title: str, file_name: Optional[str]
    ) -> Optional[KnowledgeDocument]:
        """The stored copy of an ingested document, keyed by tenant, source file and title."""
        file_match = (
            KnowledgeDocument.file_name.is_(None) if file_name is None
            else KnowledgeDocument.file_name == file_name
        )
        result = await self.session.execute(
            select(KnowledgeDocument)
            .where(
                KnowledgeDocument.tenant_id == tenant_id,
                KnowledgeDocument.title == title,
                file_match,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_ids(self, doc_ids: List[str], tenant_id: str) -> List[KnowledgeDocument]:
        """Load documents by id for one tenant, preserving the given order."""
        if not doc_ids:
            return []
        result = await self.session.execute(
            select(KnowledgeDocument).where(
                KnowledgeDocument.id.in_(doc_ids),
                KnowledgeDocument.tenant_id == tenant_id,
            )
        )
        by_id = {d.id: d for d in result.scalars().all()}
        return [by_id[i] for i in doc_ids if i in by_id]


class InventoryRepository:
    """Data access for vehicle inventory."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> InventoryItem:
        item = InventoryItem(**kwargs)
        self.session.add(item)
        await self.session.flush()
        return item

    async def get_by_id(self, item_id: str) -> Optional[InventoryItem]:
        result = await self.session.execute(
            select(InventoryItem).where(InventoryItem.id == item_id)
        )
        return result.scalar_one_or_none()

    async def get_by_matricula(self, matricula: str) -> Optional[InventoryItem]:
        result = await self.session.execute(
            select(InventoryItem).where(InventoryItem.matricula == matricula).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_unsold_by_ids(self, item_ids: List[str]) -> List[InventoryItem]:
        """Load unsold items by id, preserving the given order."""
        if not item_ids:
            return []
        result = await self.session.execute(
            select(InventoryItem).where(
                InventoryItem.id.in_(item_ids),
                InventoryItem.sold.is_(False),
            )
        )
        by_id = {i.id: i for i in result.scalars().all()}
        return [by_id[i] for i in item_ids if i in by_id]


class WebhookLogRepository:
    """Append-only audit log of raw webhook deliveries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, event_type: str, payload: str) -> WebhookLog:
        entry = WebhookLog(event_type=event_type, payload=payload, status=WebhookStatus.RECEIVED.value)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def mark(self, log_id: str, status: str, error: Optional[str] = None) -> None:
        await self.session.execute(
            update(WebhookLog)
            .where(WebhookLog.id == log_id)
            .values(status=status, error=error, processed_at=datetime.utcnow())
        )

    async def get_by_id(self, log_id: str) -> Optional[WebhookLog]:
        result = await self.session.execute(
            select(WebhookLog).where(WebhookLog.id == log_id)
        )
        return result.scalar_one_or_none()


class CampaignRepository:
    """Data access for ad campaigns."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Campaign:
        campaign = Campaign(**kwargs)
        self.session.add(campaign)
        await self.session.flush()
        return campaign

    async def get_by_form_id(self, form_id: str) -> Optional[Campaign]:
        result = await self.session.execute(
            select(Campaign).where(Campaign.form_id == form_id).limit(1)
        )
        return result.scalar_one_or_none()
