"""
Lead Funnel Module for the Carrera Cars lead bot.

This module provides the sales-funnel vocabulary and transitions:
- Closed status / timeframe / customer type enumerations (states)
- State machine with terminal guard and escalation edge detection (state_machine)
- Scheduled follow-ups for silent leads (followups)
"""

from .states import LeadStatus, Timeframe, LeadType, BOT_TERMINAL_STATUSES

__all__ = [
    "LeadStatus",
    "Timeframe",
    "LeadType",
    "BOT_TERMINAL_STATUSES",
]
