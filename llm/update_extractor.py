"""
Update Extractor for the Carrera Cars lead bot.

Splits raw generation output into the customer-facing reply and the
optional structured lead update appended after the LEAD_UPDATE_JSON:
delimiter. A generation result is either a plain ``Reply`` or a
``ReplyWithUpdate``; callers branch on the type instead of on strings.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from funnel.states import LeadStatus, LeadType, Timeframe, parse_enum

logger = logging.getLogger(__name__)

UPDATE_DELIMITER = "LEAD_UPDATE_JSON:"
DEFAULT_REPLY = "¡Hola! ¿En qué te puedo ayudar?"

MIN_YEAR = 1950
MAX_YEAR = 2100

_CODE_FENCE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)


@dataclass(frozen=True)
class LeadUpdate:
    """Validated, whitelisted attribute changes proposed by the model."""
    status: Optional[LeadStatus] = None
    budget: Optional[str] = None
    expected_purchase_timeframe: Optional[Timeframe] = None
    type: Optional[LeadType] = None

    @property
    def is_empty(self) -> bool:
        return not self.as_dict()

    def as_dict(self) -> Dict[str, Any]:
        """Only the fields that were set, with enum values unwrapped."""
        out: Dict[str, Any] = {}
        for key in ("status", "budget", "expected_purchase_timeframe", "type"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value.value if hasattr(value, "value") else value
        return out


@dataclass(frozen=True)
class PreferenceUpdate:
    """Vehicle preferences the model picked up, named after their columns."""
    preferred_vehicle_type: Optional[str] = None
    preferred_brand: Optional[str] = None
    preferred_fuel_type: Optional[str] = None
    preferred_transmission: Optional[str] = None
    preferred_colors: Optional[Tuple[str, ...]] = None
    max_kilometers: Optional[int] = None
    min_year: Optional[int] = None
    max_year: Optional[int] = None
    needs_financing: Optional[bool] = None

    def as_dict(self) -> Dict[str, Any]:
        out = {k: v for k, v in asdict(self).items() if v is not None}
        if "preferred_colors" in out:
            out["preferred_colors"] = list(out["preferred_colors"])
        return out


@dataclass(frozen=True)
class Reply:
    """Generation output carrying only conversational text."""
    text: str

    @property
    def update(self) -> LeadUpdate:
        return LeadUpdate()

    @property
    def preferences(self) -> PreferenceUpdate:
        return PreferenceUpdate()

    @property
    def should_escalate(self) -> bool:
        return False


@dataclass(frozen=True)
class ReplyWithUpdate(Reply):
    """Generation output that also carried a parseable structured block."""
    lead_update: LeadUpdate = field(default_factory=LeadUpdate)
    lead_preferences: PreferenceUpdate = field(default_factory=PreferenceUpdate)
    escalate: bool = False

    @property
    def update(self) -> LeadUpdate:
        return self.lead_update

    @property
    def preferences(self) -> PreferenceUpdate:
        return self.lead_preferences

    @property
    def should_escalate(self) -> bool:
        return self.escalate


Extraction = Union[Reply, ReplyWithUpdate]


def _parse_block(raw_block: str) -> Optional[Dict[str, Any]]:
    """Decode the first JSON object in the block, tolerating fences and trailing text."""
    block = _CODE_FENCE.sub("", raw_block.strip())
    start = block.find("{")
    if start < 0:
        return None
    try:
        obj, _ = json.JSONDecoder().raw_decode(block[start:])
    except ValueError:
        return None
    return obj if isinstance(obj, dict) else None


_TRUE_WORDS = ("true", "yes", "si", "sí", "1")
_FALSE_WORDS = ("false", "no", "0")


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_WORDS
    return False


def _optional_bool(value: Any) -> Optional[bool]:
    """Like ``_coerce_bool`` but None when the value says neither yes nor no."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


def _text(value: Any, max_length: int) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()[:max_length]


def _whole_number(value: Any) -> Optional[int]:
    """``150000``, ``"150.000 km"`` -> 150000. Negative or unreadable -> None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None
    if isinstance(value, str):
        digits = re.sub(r"\D", "", value)
        return int(digits) if digits else None
    return None


def _year(value: Any) -> Optional[int]:
    year = _whole_number(value)
    return year if year is not None and MIN_YEAR <= year <= MAX_YEAR else None


def _colors(value: Any) -> Optional[Tuple[str, ...]]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return None
    colors = tuple(c.strip() for c in value if isinstance(c, str) and c.strip())
    return colors or None


def _build_preferences(data: Dict[str, Any]) -> PreferenceUpdate:
    """Preference keys of the block; malformed values are dropped one by one."""
    return PreferenceUpdate(
        preferred_vehicle_type=_text(data.get("preferredVehicleType"), 50),
        preferred_brand=_text(data.get("preferredBrand"), 100),
        preferred_fuel_type=_text(data.get("preferredFuelType"), 50),
        preferred_transmission=_text(data.get("preferredTransmission"), 50),
        preferred_colors=_colors(data.get("preferredColors")),
        max_kilometers=_whole_number(data.get("maxKilometers")),
        min_year=_year(data.get("minYear")),
        max_year=_year(data.get("maxYear")),
        needs_financing=_optional_bool(data.get("needsFinancing")),
    )


def _build_update(data: Dict[str, Any]) -> LeadUpdate:
    """Copy only known keys; values outside the vocabulary are dropped."""
    status = parse_enum(LeadStatus, data.get("status"))
    if data.get("status") is not None and status is None:
        logger.warning(f"Dropping unknown status from model output: {data.get('status')!r}")

    budget = data.get("budget")
    if isinstance(budget, (int, float)) and not isinstance(budget, bool):
        budget = str(budget)
    if not isinstance(budget, str) or not budget.strip():
        budget = None

    return LeadUpdate(
        status=status,
        budget=budget.strip() if budget else None,
        expected_purchase_timeframe=parse_enum(Timeframe, data.get("expectedPurchaseTimeframe")),
        type=parse_enum(LeadType, data.get("type")),
    )


def extract(raw_text: str) -> Extraction:
    """
    Separate the reply from the structured update block.

    Never raises. A missing delimiter yields a plain ``Reply`` with the whole
    text; a malformed block yields a plain ``Reply`` with the text before the
    delimiter so the customer never sees a broken payload.
    """
    text = (raw_text or "").strip()
    idx = text.find(UPDATE_DELIMITER)
    if idx < 0:
        return Reply(text=text or DEFAULT_REPLY)

    reply_text = text[:idx].strip() or DEFAULT_REPLY
    data = _parse_block(text[idx + len(UPDATE_DELIMITER):])
    if data is None:
        logger.warning("Malformed lead update block in model output, ignoring update")
        return Reply(text=reply_text)

    return ReplyWithUpdate(
        text=reply_text,
        lead_update=_build_update(data),
        lead_preferences=_build_preferences(data),
        escalate=_coerce_bool(data.get("shouldEscalate", False)),
    )
