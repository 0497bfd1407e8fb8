"""
Funnel state machine for the Carrera Cars lead bot.

The model proposes the next status and the machine accepts any member of
the vocabulary. Two rules are enforced in code: leads in a bot-terminal
status are never advanced by the bot, and the escalation into ``manager``
is detected on the edge so its side effects run once.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from llm.update_extractor import LeadUpdate
from .states import LeadStatus, BOT_TERMINAL_STATUSES, parse_enum

logger = logging.getLogger(__name__)


class ConversationCompleted(Exception):
    """The lead is past the bot's part of the funnel; no reply is generated."""

    def __init__(self, lead_id: str, status: LeadStatus):
        self.lead_id = lead_id
        self.status = status
        super().__init__(f"Conversation completed for lead {lead_id} (status={status.value})")


@dataclass
class Transition:
    """Outcome of applying one extracted update to a lead."""
    previous_status: LeadStatus
    status: LeadStatus
    changes: Dict[str, Any] = field(default_factory=dict)
    escalated: bool = False

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.status


class FunnelStateMachine:
    """Applies extracted updates to the lead funnel."""

    def __init__(self, escalation_follow_up_hours: int = 24):
        self.escalation_follow_up = timedelta(hours=escalation_follow_up_hours)

    @staticmethod
    def ensure_bot_active(lead_id: str, status) -> LeadStatus:
        """Raise ConversationCompleted if the bot must not answer this lead."""
        current = LeadStatus(status)
        if current in BOT_TERMINAL_STATUSES:
            raise ConversationCompleted(lead_id, current)
        return current

    def apply(
        self,
        current_status,
        update: LeadUpdate,
        should_escalate: bool = False,
        now: Optional[datetime] = None,
    ) -> Transition:
        """
        Compute the lead changes for an extracted update.

        Args:
            current_status: Lead status before this turn
            update: Whitelisted update from the model output
            should_escalate: Completion flag from the model output
            now: Reference time for timestamps

        Returns:
            Transition with the column changes to persist
        """
        now = now or datetime.utcnow()
        previous = LeadStatus(current_status)

        proposed = parse_enum(LeadStatus, update.status)
        if proposed is None and should_escalate:
            proposed = LeadStatus.MANAGER
        elif should_escalate and proposed != LeadStatus.MANAGER:
            logger.warning(
                f"Escalation flag set but model proposed {proposed.value}; keeping proposed status"
            )

        new_status = proposed or previous
        changes: Dict[str, Any] = {}

        if new_status != previous:
            changes["status"] = new_status
        if update.budget is not None:
            changes["budget"] = update.budget
        if update.expected_purchase_timeframe is not None:
            changes["expected_purchase_timeframe"] = update.expected_purchase_timeframe
        if update.type is not None:
            changes["type"] = update.type

        if previous == LeadStatus.NUEVO and new_status != LeadStatus.NUEVO:
            changes["last_contacted_at"] = now

        escalated = previous != LeadStatus.MANAGER and new_status == LeadStatus.MANAGER
        if escalated:
            changes["next_follow_up_date"] = now + self.escalation_follow_up

        if changes.get("status"):
            logger.info(f"Funnel transition {previous.value} -> {new_status.value}")

        return Transition(
            previous_status=previous,
            status=new_status,
            changes=changes,
            escalated=escalated,
        )

    def advance(self, current_status, target: LeadStatus, now: Optional[datetime] = None) -> Transition:
        """Move a lead to target outside a model turn (welcome message, inactivity)."""
        return self.apply(current_status, LeadUpdate(status=target), now=now)
