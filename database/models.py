"""
SQLAlchemy ORM models for the Carrera Cars lead bot.

All persistent entities: leads and their preferences, conversation messages,
knowledge documents, inventory, webhook logs and campaigns.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text, ForeignKey,
    JSON, Index,
)
from sqlalchemy.orm import DeclarativeBase, relationship, validates

from funnel.states import (
    LeadStatus, MessageDirection, MessageStatus, WebhookStatus, DocumentCategory,
)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=True, index=True)
    external_id = Column(String(100), nullable=True)
    name = Column(String(255), nullable=False)
    type = Column(String(30), default="facebook")  # facebook, google, manual
    form_id = Column(String(100), nullable=True, index=True)
    ad_id = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    leads = relationship("Lead", back_populates="campaign")


class Lead(Base):
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True, unique=True)
    email = Column(String(255), nullable=True, unique=True)
    type = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default=LeadStatus.NUEVO.value)
    budget = Column(String(100), nullable=True)
    expected_purchase_timeframe = Column(String(20), nullable=True)
    campaign_id = Column(String(36), ForeignKey("campaigns.id"), nullable=True)
    last_contacted_at = Column(DateTime, nullable=True)
    last_message_at = Column(DateTime, nullable=True)
    next_follow_up_date = Column(DateTime, nullable=True)
    follow_up_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="leads")
    messages = relationship("ConversationMessage", back_populates="lead", cascade="all, delete-orphan")
    events = relationship("LeadEvent", back_populates="lead", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_lead_tenant_status", "tenant_id", "status"),
        Index("ix_lead_next_follow_up", "next_follow_up_date"),
    )

    @validates("status")
    def _validate_status(self, key, value):
        # Accepts enum members or their string values; anything else is a bug
        return LeadStatus(value).value


class LeadEvent(Base):
    __tablename__ = "lead_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    lead_id = Column(String(36), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(30), nullable=False)  # created, updated, status_changed, escalated, bot_refused
    details_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)

    lead = relationship("Lead", back_populates="events")


class LeadPreference(Base):
    __tablename__ = "lead_preferences"

    id = Column(String(36), primary_key=True, default=_uuid)
    lead_id = Column(String(36), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, unique=True)
    preferred_vehicle_type = Column(String(50), nullable=True)
    preferred_brand = Column(String(100), nullable=True)
    preferred_fuel_type = Column(String(50), nullable=True)
    preferred_transmission = Column(String(50), nullable=True)
    preferred_colors = Column(JSON, nullable=True)
    max_kilometers = Column(Integer, nullable=True)
    min_year = Column(Integer, nullable=True)
    max_year = Column(Integer, nullable=True)
    needs_financing = Column(Boolean, nullable=True)
    min_budget = Column(Float, nullable=True)
    max_budget = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ConversationMessage(Base):
    __tablename__ = "conversation_messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    lead_id = Column(String(36), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    direction = Column(String(10), nullable=False)
    content = Column(Text, nullable=False)
    whatsapp_message_id = Column(String(128), nullable=True, index=True)
    status = Column(String(15), nullable=False, default=MessageStatus.RECEIVED.value)
    error_message = Column(Text, nullable=True)
    whatsapp_timestamp = Column(DateTime, nullable=True)
    embedding = Column(JSON, nullable=True)
    metadata_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)

    lead = relationship("Lead", back_populates="messages")

    __table_args__ = (
        Index("ix_msg_lead_created", "lead_id", "created_at"),
    )

    @validates("direction")
    def _validate_direction(self, key, value):
        return MessageDirection(value).value

    @validates("status")
    def _validate_status(self, key, value):
        return MessageStatus(value).value


class KnowledgeDocument(Base):
    __tablename__ = "knowledge_documents"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    category = Column(String(20), nullable=False, default=DocumentCategory.GENERAL.value)
    content = Column(Text, nullable=False)
    file_name = Column(String(255), nullable=True)
    embedding = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @validates("category")
    def _validate_category(self, key, value):
        return DocumentCategory(value).value


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    marca = Column(String(100), nullable=True)
    modelo = Column(String(100), nullable=True)
    version = Column(String(150), nullable=True)
    motor = Column(String(100), nullable=True)
    carroceria = Column(String(100), nullable=True)
    puertas = Column(Integer, nullable=True)
    transmision = Column(String(50), nullable=True)
    color = Column(String(50), nullable=True)
    kilometros = Column(Integer, nullable=True)
    matricula = Column(String(20), nullable=True)
    type = Column(String(30), nullable=True)
    description = Column(Text, nullable=True)
    url = Column(String(500), nullable=True)
    precio_venta = Column(Float, nullable=True)
    sold = Column(Boolean, default=False, nullable=False)
    embedding = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_inventory_sold", "sold"),
    )

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.marca, self.modelo, self.version) if p]
        return " ".join(parts) or "Vehículo"


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_type = Column(String(50), nullable=False)
    payload = Column(Text, nullable=False)
    status = Column(String(15), nullable=False, default=WebhookStatus.RECEIVED.value)
    error = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_webhook_type_created", "event_type", "created_at"),
    )

    @validates("status")
    def _validate_status(self, key, value):
        return WebhookStatus(value).value
