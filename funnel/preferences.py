"""
Lead preference helpers for the Carrera Cars lead bot.

Turns the free-text budget a customer gives ("entre 15 y 20 mil",
"hasta 18.000€", "unos 12k") into the numeric range stored with the
lead's other vehicle preferences.
"""

import logging
import re
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# Around-a-figure budgets are widened to +/- 20%
APPROXIMATE_SPREAD = 0.2

_RANGE_PATTERNS = [
    re.compile(r"(\d+)\s*-\s*(\d+)"),
    re.compile(r"entre\s*(\d+)\s*y\s*(\d+)"),
    re.compile(r"(\d+)\s+a\s+(\d+)"),
]
_NUMBER = re.compile(r"(\d+)")
_THOUSANDS = re.compile(r"(\d)\s*(?:k|mil)\b")
# "15 a 20 mil": the suffix applies to both ends of the range
_SHARED_THOUSANDS = re.compile(r"(\d+)(\s*(?:-|y|a)\s*)(\d+)\s*(?:k|mil)\b")

_CEILING_WORDS = ("hasta", "máximo", "maximo", "menos")
_APPROXIMATE_WORDS = ("alrededor", "unos", "unas", "aproximadamente")

BudgetRange = Tuple[Optional[float], Optional[float]]


def _scale_shared_thousands(match: "re.Match") -> str:
    low = match.group(1)
    if int(low) < 1000:
        low += "000"
    return f"{low}{match.group(2)}{match.group(3)}000"


def parse_budget_range(budget: Optional[str]) -> BudgetRange:
    """
    Parse a Spanish budget phrase into (min, max).

    Ranges give both ends. Ceilings ("hasta", "máximo", "menos de") and bare
    figures give only a max. Approximate figures ("unos", "alrededor de")
    give a band around the figure. Unreadable text gives (None, None).
    """
    if not budget:
        return None, None
    lowered = budget.lower()
    clean = re.sub(r"[€$,.]", "", lowered)
    clean = _SHARED_THOUSANDS.sub(_scale_shared_thousands, clean)
    clean = _THOUSANDS.sub(r"\g<1>000", clean)

    for pattern in _RANGE_PATTERNS:
        match = pattern.search(clean)
        if match:
            low, high = float(match.group(1)), float(match.group(2))
            return min(low, high), max(low, high)

    match = _NUMBER.search(clean)
    if not match:
        logger.debug(f"No figure in budget {budget!r}")
        return None, None

    value = float(match.group(1))
    if any(word in lowered for word in _CEILING_WORDS):
        return None, value
    if any(word in lowered for word in _APPROXIMATE_WORDS):
        return value * (1 - APPROXIMATE_SPREAD), value * (1 + APPROXIMATE_SPREAD)
    return None, value


def preference_changes(preferences: Dict[str, Any], budget: Optional[str]) -> Dict[str, Any]:
    """
    Column changes for the lead_preferences row.

    A newly stated budget replaces the whole stored range, so an open end
    clears the old bound.
    """
    changes = dict(preferences)
    if budget:
        low, high = parse_budget_range(budget)
        if low is not None or high is not None:
            changes["min_budget"] = low
            changes["max_budget"] = high
    return changes
