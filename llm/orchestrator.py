"""
Conversation Orchestrator for the Carrera Cars lead bot.

Runs one inbound WhatsApp message through the full pipeline: lead
resolution, persistence, retrieval, generation, update extraction,
funnel transition, delivery and escalation.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from api.channels.base import ChannelMessage
from api.middleware.metrics import (
    record_escalation,
    record_generation_failure,
    record_llm_latency,
    record_retrieval_latency,
    record_transition,
)
from database.models import ConversationMessage, Lead
from database.repositories import LeadRepository, MessageRepository, PreferenceRepository
from funnel.preferences import preference_changes
from funnel.state_machine import ConversationCompleted, FunnelStateMachine, Transition
from funnel.states import LeadStatus, MessageDirection, MessageStatus, BOT_ACTIVE_STATUSES
from retrieval.context_builder import ContextBuilder
from retrieval.knowledge_retriever import RetrievalResult
from .providers.base import GenerationError, HistoryMessage
from .prompt_templates import PromptTemplates
from .update_extractor import extract

logger = logging.getLogger(__name__)

DEFAULT_LEAD_NAME = "WhatsApp User"


@dataclass
class InboundMessage:
    """A customer text message as received from the transport."""
    phone: str
    text: str
    name: Optional[str] = None
    external_id: Optional[str] = None
    transport_timestamp: Optional[datetime] = None


@dataclass
class TurnResult:
    """Outcome of one conversation turn."""
    lead_id: str
    reply: Optional[str] = None
    sent: bool = False
    inbound_message_id: Optional[str] = None
    outbound_message_id: Optional[str] = None
    transition: Optional[Transition] = None
    escalated: bool = False
    fallback: bool = False
    duplicate: bool = False
    processing_time_ms: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lead_id": self.lead_id,
            "reply": self.reply,
            "sent": self.sent,
            "inbound_message_id": self.inbound_message_id,
            "outbound_message_id": self.outbound_message_id,
            "status": self.transition.status.value if self.transition else None,
            "escalated": self.escalated,
            "fallback": self.fallback,
            "duplicate": self.duplicate,
            "processing_time_ms": self.processing_time_ms,
            "timestamp": self.timestamp,
        }


class ConversationOrchestrator:
    """
    Orchestrates a conversation turn.

    Pipeline:
    1. Resolve or create the lead by phone
    2. Persist the inbound message (embedding best-effort)
    3. Refuse leads past the bot's part of the funnel
    4. Load recent history
    5. Retrieve, compose with stored preferences, generate, extract
    6. Apply the funnel transition and store new preferences
    7. Wait, send, persist the outbound message on success
    8. Queue the manager notification on escalation
    """

    def __init__(
        self,
        embedding_service: Any,
        retriever: Any,
        context_builder: ContextBuilder,
        generator: Any,
        transport: Any,
        notifier: Any,
        state_machine: Optional[FunnelStateMachine] = None,
        history_limit: int = 10,
        typing_delay_per_char: float = 0.05,
        typing_delay_min: float = 2.0,
        typing_delay_max: float = 15.0,
        follow_up_threshold_hours: int = 24,
        brand_name: str = "Carrera Cars",
        agent_name: str = "Pedro",
        default_tenant_id: str = "default",
        dedupe_inbound: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            embedding_service: Embedding gateway (embed_text)
            retriever: Two-corpus knowledge retriever; None disables grounding
            context_builder: Grounding block renderer
            generator: Generation gateway (generate)
            transport: Messaging channel (send_message, mark_read)
            notifier: Escalation notifier (notify_escalation)
            state_machine: Funnel state machine
            history_limit: Messages of history given to the model
            typing_delay_per_char: Seconds of simulated typing per reply character
            typing_delay_min: Lower bound of the typing delay
            typing_delay_max: Upper bound of the typing delay
            follow_up_threshold_hours: Delay before the first follow-up after a welcome
            brand_name: Dealership name for prompts
            agent_name: Persona name for prompts
            default_tenant_id: Tenant for leads without one
            dedupe_inbound: Skip inbound messages whose external id was already stored
            sleep: Coroutine used for the typing delay
        """
        self.embedding_service = embedding_service
        self.retriever = retriever
        self.context_builder = context_builder
        self.generator = generator
        self.transport = transport
        self.notifier = notifier
        self.state_machine = state_machine or FunnelStateMachine()
        self.history_limit = history_limit
        self.typing_delay_per_char = typing_delay_per_char
        self.typing_delay_min = typing_delay_min
        self.typing_delay_max = typing_delay_max
        self.follow_up_threshold = timedelta(hours=follow_up_threshold_hours)
        self.brand_name = brand_name
        self.agent_name = agent_name
        self.default_tenant_id = default_tenant_id
        self.dedupe_inbound = dedupe_inbound
        self._sleep = sleep

    # ── Lead resolution ───────────────────────────────────────────

    async def resolve_lead(
        self,
        session: AsyncSession,
        phone: str,
        name: Optional[str] = None,
        **extra,
    ) -> Tuple[Lead, bool]:
        """Find the lead by phone or create it in ``nuevo``. Returns (lead, created)."""
        leads = LeadRepository(session)
        lead = await leads.get_by_phone(phone)
        if lead:
            return lead, False

        extra.setdefault("tenant_id", self.default_tenant_id)
        lead = await leads.create(
            phone=phone,
            name=name or DEFAULT_LEAD_NAME,
            status=LeadStatus.NUEVO,
            **extra,
        )
        logger.info(f"Created lead {lead.id} for {phone}", extra={"lead_id": lead.id})
        return lead, True

    # ── Main turn ─────────────────────────────────────────────────

    async def handle_inbound(self, session: AsyncSession, message: InboundMessage) -> TurnResult:
        """
        Process one inbound text message.

        Raises:
            ConversationCompleted: the lead is in a bot-terminal status; the
                inbound message is stored but nothing is generated or sent.
        """
        start = time.time()
        now = datetime.utcnow()
        leads = LeadRepository(session)
        messages = MessageRepository(session)

        if self.dedupe_inbound and message.external_id:
            if await messages.inbound_exists(message.external_id):
                logger.info(f"Skipping duplicate inbound message {message.external_id}")
                lead = await leads.get_by_phone(message.phone)
                return TurnResult(lead_id=lead.id if lead else "", duplicate=True)

        # 1. Lead
        lead, _ = await self.resolve_lead(session, message.phone, message.name)

        # 2. Inbound message
        embedding = await self._embed(message.text)
        inbound = await messages.add(
            lead_id=lead.id,
            direction=MessageDirection.INBOUND.value,
            content=message.text,
            status=MessageStatus.RECEIVED.value,
            whatsapp_message_id=message.external_id,
            whatsapp_timestamp=message.transport_timestamp,
            embedding=embedding,
        )
        lead.last_message_at = now
        if lead.status in {s.value for s in BOT_ACTIVE_STATUSES}:
            lead.follow_up_count = 0
            lead.next_follow_up_date = None
        if message.name and lead.name == DEFAULT_LEAD_NAME:
            lead.name = message.name
        await session.commit()

        # 3. Terminal guard
        try:
            current_status = self.state_machine.ensure_bot_active(lead.id, lead.status)
        except ConversationCompleted as e:
            await leads.add_event(lead.id, "bot_refused", {"status": e.status, "message_id": inbound.id})
            await session.commit()
            logger.info(f"Bot refused turn for lead {lead.id} in status {e.status.value}")
            raise

        # 4. History
        history = await self._history(messages, lead.id, exclude_id=inbound.id)

        # 5. Grounding and generation
        retrieval = await self._retrieve(session, embedding, lead)
        preferences = await PreferenceRepository(session).get_by_lead(lead.id)
        context = self.context_builder.build(
            retrieval.documents, retrieval.items, lead, preferences=preferences
        )
        system_prompt = PromptTemplates.get_system_prompt(
            context.text, brand_name=self.brand_name, agent_name=self.agent_name
        )

        gen_start = time.time()
        try:
            raw = await self.generator.generate(system_prompt, history, message.text)
            if not raw or not raw.strip():
                raise GenerationError("Empty generation output")
        except Exception as e:
            record_generation_failure()
            logger.error(f"Generation failed for lead {lead.id}, sending fallback: {e}")
            outbound = await self.send_text(session, lead, PromptTemplates.FALLBACK_MESSAGE, {
                "responding_to": inbound.id,
                "fallback": True,
            })
            await self._mark_read(message.external_id)
            return TurnResult(
                lead_id=lead.id,
                reply=PromptTemplates.FALLBACK_MESSAGE,
                sent=outbound is not None,
                inbound_message_id=inbound.id,
                outbound_message_id=outbound.id if outbound else None,
                fallback=True,
                processing_time_ms=(time.time() - start) * 1000,
            )
        record_llm_latency(time.time() - gen_start)

        extraction = extract(raw)

        # 6. Funnel
        transition = self.state_machine.apply(
            current_status, extraction.update, extraction.should_escalate, now=now
        )
        await self._persist_transition(leads, lead, transition)
        changes = preference_changes(extraction.preferences.as_dict(), extraction.update.budget)
        if changes:
            await PreferenceRepository(session).upsert(lead.id, **changes)
        await session.commit()

        # 7. Delivery
        outbound = await self.send_text(session, lead, extraction.text, {
            "responding_to": inbound.id,
            "selected_items": [item.id for item in retrieval.items],
        })
        if outbound is not None:
            await self._mark_read(message.external_id)

        # 8. Escalation
        if transition.escalated:
            self._notify_escalation(lead)

        return TurnResult(
            lead_id=lead.id,
            reply=extraction.text,
            sent=outbound is not None,
            inbound_message_id=inbound.id,
            outbound_message_id=outbound.id if outbound else None,
            transition=transition,
            escalated=transition.escalated,
            processing_time_ms=(time.time() - start) * 1000,
        )

    # ── Outbound helpers ──────────────────────────────────────────

    def typing_delay(self, text: str) -> float:
        delay = len(text) * self.typing_delay_per_char
        return max(self.typing_delay_min, min(self.typing_delay_max, delay))

    async def send_text(
        self,
        session: AsyncSession,
        lead: Lead,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
        simulate_typing: bool = True,
    ) -> Optional[ConversationMessage]:
        """
        Send text to the lead and store it only if the transport accepted it.

        Returns the stored outbound message, or None when the send failed.
        """
        if simulate_typing:
            await self._sleep(self.typing_delay(text))

        try:
            response = await self.transport.send_message(ChannelMessage(to=lead.phone, content=text))
        except Exception as e:
            logger.error(f"Transport send raised for lead {lead.id}: {e}")
            return None

        if not response.success:
            logger.error(f"Reply to lead {lead.id} not delivered: {response.error}", extra={"lead_id": lead.id})
            return None

        outbound = await MessageRepository(session).add(
            lead_id=lead.id,
            direction=MessageDirection.OUTBOUND.value,
            content=text,
            status=MessageStatus.SENT.value,
            whatsapp_message_id=response.message_id,
            metadata=metadata,
        )
        return outbound

    async def welcome(self, session: AsyncSession, lead: Lead) -> bool:
        """Greet a newly created lead and move it to ``contactado``."""
        text = PromptTemplates.welcome_message(lead.name, self.brand_name, self.agent_name)
        outbound = await self.send_text(session, lead, text, {"welcome": True}, simulate_typing=False)
        if outbound is None:
            return False

        now = datetime.utcnow()
        transition = self.state_machine.advance(lead.status, LeadStatus.CONTACTADO, now=now)
        transition.changes["next_follow_up_date"] = now + self.follow_up_threshold
        await self._persist_transition(LeadRepository(session), lead, transition)
        return True

    # ── Internals ─────────────────────────────────────────────────

    async def _embed(self, text: str) -> Optional[List[float]]:
        try:
            return await self.embedding_service.embed_text(text)
        except Exception as e:
            logger.warning(f"Embedding failed, continuing without grounding: {e}")
            return None

    async def _history(
        self, messages: MessageRepository, lead_id: str, exclude_id: str
    ) -> List[HistoryMessage]:
        recent = await messages.get_recent(lead_id, limit=self.history_limit, exclude_id=exclude_id)
        return [
            HistoryMessage(
                role="user" if m.direction == MessageDirection.INBOUND.value else "assistant",
                content=m.content,
            )
            for m in recent
        ]

    async def _retrieve(
        self, session: AsyncSession, embedding: Optional[List[float]], lead: Lead
    ) -> RetrievalResult:
        if embedding is None or self.retriever is None:
            return RetrievalResult()
        start = time.time()
        try:
            return await self.retriever.retrieve(
                session, embedding, lead.tenant_id or self.default_tenant_id
            )
        except Exception as e:
            logger.warning(f"Retrieval failed, continuing without grounding: {e}")
            return RetrievalResult()
        finally:
            record_retrieval_latency(time.time() - start)

    async def _persist_transition(self, leads: LeadRepository, lead: Lead, transition: Transition) -> None:
        if not transition.changes:
            return
        await leads.update(lead, **transition.changes)
        if transition.status_changed:
            record_transition(transition.previous_status.value, transition.status.value)
            await leads.add_event(lead.id, "status_changed", {
                "from": transition.previous_status,
                "to": transition.status,
            })
        if transition.escalated:
            record_escalation()
            await leads.add_event(lead.id, "escalated", {
                "next_follow_up_date": transition.changes.get("next_follow_up_date"),
            })

    async def _mark_read(self, external_id: Optional[str]) -> None:
        if not external_id:
            return
        try:
            await self.transport.mark_read(external_id)
        except Exception as e:
            logger.warning(f"Mark-read failed for {external_id}: {e}")

    def _notify_escalation(self, lead: Lead) -> None:
        try:
            self.notifier.notify_escalation(lead.name, f"WhatsApp {lead.phone}")
        except Exception as e:
            logger.error(f"Escalation notification could not be queued for lead {lead.id}: {e}")
