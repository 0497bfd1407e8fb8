"""
Facebook Lead Ads webhook intake for the Carrera Cars lead bot.

Each ``leadgen`` change is resolved through the Graph API and turned into
a lead, greeted on WhatsApp when a phone number is available.
"""

import logging
from typing import Any, Dict, Iterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.repositories import CampaignRepository, LeadRepository
from funnel.states import LeadStatus
from llm.orchestrator import ConversationOrchestrator
from ..channels.facebook import FacebookLeadAdsClient
from .base import WebhookIntake, WorkItem, SUCCEEDED, SKIPPED

logger = logging.getLogger(__name__)

DEFAULT_FACEBOOK_LEAD_NAME = "Facebook Lead"


class FacebookLeadIntake(WebhookIntake):
    """Intake for ``page`` deliveries carrying lead-ad submissions."""

    channel = "facebook"
    event_type = "facebook_lead"
    expected_object = "page"
    accepted_fields = frozenset({"leadgen"})

    def __init__(
        self,
        verify_token: str,
        client: FacebookLeadAdsClient,
        orchestrator: ConversationOrchestrator,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        welcome_enabled: bool = True,
    ):
        super().__init__(verify_token, session_factory)
        self.client = client
        self.orchestrator = orchestrator
        self.welcome_enabled = welcome_enabled

    def items_from_change(self, value: Dict[str, Any]) -> Iterator[WorkItem]:
        if value:
            yield WorkItem("leadgen", value)

    async def handle_leadgen(self, session: AsyncSession, item: WorkItem) -> str:
        leadgen_id = item.payload["leadgen_id"]
        form = await self.client.fetch_lead(str(leadgen_id))
        form_id = item.payload.get("form_id") or form.form_id

        leads = LeadRepository(session)
        existing = None
        if form.phone:
            existing = await leads.get_by_phone(form.phone)
        if existing is None and form.email:
            existing = await leads.get_by_email(form.email)
        if existing is not None:
            logger.info(f"Facebook lead {leadgen_id} matches existing lead {existing.id}")
            return SKIPPED

        campaign = await CampaignRepository(session).get_by_form_id(str(form_id)) if form_id else None
        lead = await leads.create(
            name=form.full_name or DEFAULT_FACEBOOK_LEAD_NAME,
            email=form.email,
            phone=form.phone,
            status=LeadStatus.NUEVO,
            campaign_id=campaign.id if campaign else None,
            tenant_id=(campaign.tenant_id if campaign and campaign.tenant_id else self.orchestrator.default_tenant_id),
        )
        logger.info(f"Created lead {lead.id} from Facebook lead {leadgen_id}", extra={"lead_id": lead.id})

        if lead.phone and self.welcome_enabled:
            await self.orchestrator.welcome(session, lead)
        return SUCCEEDED
