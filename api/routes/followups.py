"""
Scheduled follow-up trigger for the Carrera Cars lead bot.

An external cron calls the batch endpoint; the bot itself keeps no timer.
Operators can also push the next follow-up to a single lead.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..services import get_services
from config.settings import get_settings
from database.session import get_db
from funnel.followups import FollowUpNotAllowed, FollowUpNotDelivered, LeadNotFound

logger = logging.getLogger(__name__)

router = APIRouter()


def require_cron_secret(authorization: Optional[str] = Header(default=None)):
    secret = get_settings().cron_secret
    if not secret or authorization != f"Bearer {secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/cron/follow-ups", dependencies=[Depends(require_cron_secret)])
async def run_follow_ups(db: AsyncSession = Depends(get_db)):
    """Send due follow-ups and retire leads that never answered."""
    services = get_services()
    if services.follow_up_service is None:
        raise HTTPException(status_code=503, detail="Follow-up service not initialized")

    report = await services.follow_up_service.process_follow_ups(db)
    logger.info(f"Follow-up run finished: {report.to_dict()}")
    return {"success": True, **report.to_dict()}


@router.post("/leads/{lead_id}/follow-up", dependencies=[Depends(require_cron_secret)])
async def send_lead_follow_up(lead_id: str, db: AsyncSession = Depends(get_db)):
    """Send the next status-specific follow-up to one lead now."""
    services = get_services()
    if services.follow_up_service is None:
        raise HTTPException(status_code=503, detail="Follow-up service not initialized")

    try:
        count = await services.follow_up_service.send_one(db, lead_id)
    except LeadNotFound:
        raise HTTPException(status_code=404, detail="Lead not found")
    except FollowUpNotAllowed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except FollowUpNotDelivered:
        raise HTTPException(status_code=502, detail="Failed to send follow-up")

    return {"success": True, "message": "Follow-up sent successfully", "follow_up_count": count}
