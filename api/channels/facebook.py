"""
Facebook Lead Ads client for the Carrera Cars lead bot.

Fetches the answers of a submitted lead form from the Graph API.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class FacebookAPIError(Exception):
    """Graph API lookup of a lead form failed."""


@dataclass
class LeadFormData:
    """Answers of one Lead Ads form submission."""
    leadgen_id: str
    form_id: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    raw_fields: Dict[str, List[str]] = field(default_factory=dict)


def normalize_spanish_phone(phone: Optional[str]) -> Optional[str]:
    """Prefix +34 to local Spanish numbers (mobile 6/7, landline 9)."""
    if not phone:
        return None
    phone = re.sub(r"[\s\-().]", "", phone)
    if phone.startswith("+"):
        return phone
    if phone.startswith("00"):
        return f"+{phone[2:]}"
    if phone[:1] in ("6", "7", "9"):
        return f"+34{phone}"
    return phone


def parse_field_data(leadgen_id: str, data: Dict[str, Any]) -> LeadFormData:
    fields: Dict[str, List[str]] = {}
    for entry in data.get("field_data") or []:
        name = entry.get("name")
        if name:
            fields[name] = list(entry.get("values") or [])

    def first(key: str) -> Optional[str]:
        values = fields.get(key) or []
        return values[0].strip() if values and values[0] else None

    email = first("email")
    return LeadFormData(
        leadgen_id=leadgen_id,
        form_id=data.get("form_id"),
        full_name=first("full_name"),
        email=email.lower() if email else None,
        phone=normalize_spanish_phone(first("phone_number")),
        raw_fields=fields,
    )


class FacebookLeadAdsClient:
    """Thin Graph API client for lead retrieval."""

    BASE_URL = "https://graph.facebook.com"

    def __init__(self, access_token: str, api_version: str = "v17.0", timeout: float = 10.0):
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout

    async def fetch_lead(self, leadgen_id: str) -> LeadFormData:
        if not self.access_token:
            raise FacebookAPIError("Facebook access token not configured")

        url = f"{self.BASE_URL}/{self.api_version}/{leadgen_id}"
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(url, params={"access_token": self.access_token}, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise FacebookAPIError(f"Graph API request failed: {e}") from e

        if resp.status_code != 200:
            raise FacebookAPIError(f"Graph API error {resp.status_code}: {resp.text}")

        return parse_field_data(leadgen_id, resp.json())
