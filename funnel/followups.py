"""
Follow-up scheduling for the Carrera Cars lead bot.

Nudges silent leads that are still in the bot part of the funnel and
retires the ones that never answered.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from database.repositories import LeadRepository
from llm.prompt_templates import PromptTemplates
from .state_machine import FunnelStateMachine
from .states import BOT_ACTIVE_STATUSES, LeadStatus

logger = logging.getLogger(__name__)


@dataclass
class FollowUpReport:
    sent: int = 0
    failed: int = 0
    inactivated: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"sent": self.sent, "failed": self.failed, "inactivated": self.inactivated}


class LeadNotFound(LookupError):
    """No lead with the requested id."""


class FollowUpNotAllowed(ValueError):
    """The lead cannot receive another follow-up."""


class FollowUpNotDelivered(RuntimeError):
    """The transport did not accept the follow-up message."""


class FollowUpService:
    """
    Sends status-specific follow-ups and marks exhausted leads inactive.

    A lead is due when its scheduled follow-up date has passed, or when it
    has none and its last inbound message is older than the threshold.
    """

    def __init__(
        self,
        orchestrator: Any,
        threshold_hours: int = 24,
        max_follow_ups: int = 3,
        state_machine: Optional[FunnelStateMachine] = None,
    ):
        self.orchestrator = orchestrator
        self.threshold = timedelta(hours=threshold_hours)
        self.max_follow_ups = max_follow_ups
        self.state_machine = state_machine or FunnelStateMachine()

    @property
    def _active_values(self):
        return [s.value for s in BOT_ACTIVE_STATUSES]

    async def process_follow_ups(self, session: AsyncSession, now: Optional[datetime] = None) -> FollowUpReport:
        now = now or datetime.utcnow()
        report = FollowUpReport()
        leads = LeadRepository(session)

        due = await leads.list_due_for_follow_up(
            statuses=self._active_values,
            now=now,
            stale_before=now - self.threshold,
            max_follow_ups=self.max_follow_ups,
        )
        logger.info(f"{len(due)} leads due for follow-up")

        for lead in due:
            if await self._send_follow_up(session, leads, lead, now):
                report.sent += 1
            else:
                report.failed += 1

        report.inactivated = await self.mark_inactive_leads(session, now)
        return report

    async def mark_inactive_leads(self, session: AsyncSession, now: Optional[datetime] = None) -> int:
        """Move leads that ignored every follow-up to ``inactivo``."""
        now = now or datetime.utcnow()
        leads = LeadRepository(session)
        silent_before = now - self.threshold * self.max_follow_ups * 2

        exhausted = await leads.list_exhausted(self._active_values, self.max_follow_ups, silent_before)
        for lead in exhausted:
            transition = self.state_machine.advance(lead.status, LeadStatus.INACTIVO, now=now)
            changes = dict(transition.changes, next_follow_up_date=None)
            await leads.update(lead, **changes)
            await leads.add_event(lead.id, "status_changed", {
                "from": transition.previous_status,
                "to": transition.status,
                "reason": "no_response",
            })
        if exhausted:
            logger.info(f"Marked {len(exhausted)} leads as inactive")
        return len(exhausted)

    async def send_one(self, session: AsyncSession, lead_id: str, now: Optional[datetime] = None) -> int:
        """
        Send the next follow-up to one lead on demand.

        Returns the lead's new follow-up count.

        Raises:
            LeadNotFound: no lead with that id
            FollowUpNotAllowed: no phone, follow-ups exhausted, or a status
                outside the bot part of the funnel
            FollowUpNotDelivered: the transport rejected the message
        """
        now = now or datetime.utcnow()
        leads = LeadRepository(session)
        lead = await leads.get_by_id(lead_id)
        if lead is None:
            raise LeadNotFound(lead_id)
        if not lead.phone:
            raise FollowUpNotAllowed("Lead has no phone number")
        if (lead.follow_up_count or 0) >= self.max_follow_ups:
            raise FollowUpNotAllowed("Maximum follow-ups reached")
        if lead.status not in self._active_values:
            raise FollowUpNotAllowed(f"Lead status {lead.status} doesn't allow follow-ups")

        if not await self._send_follow_up(session, leads, lead, now, manual=True):
            raise FollowUpNotDelivered(lead_id)
        logger.info(f"Manual follow-up {lead.follow_up_count} sent to lead {lead.id}", extra={"lead_id": lead.id})
        return lead.follow_up_count

    async def _send_follow_up(
        self, session: AsyncSession, leads: LeadRepository, lead, now: datetime, manual: bool = False
    ) -> bool:
        count = lead.follow_up_count or 0
        text = PromptTemplates.follow_up_message(lead.status, count)
        metadata = {"is_follow_up": True, "follow_up_number": count + 1}
        if manual:
            metadata["is_manual"] = True

        outbound = await self.orchestrator.send_text(session, lead, text, metadata, simulate_typing=False)
        if outbound is None:
            return False

        await leads.update(
            lead,
            follow_up_count=count + 1,
            next_follow_up_date=now + self.threshold,
            last_contacted_at=now,
        )
        return True
