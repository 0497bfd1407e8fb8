"""
Webhook Routes for the Carrera Cars lead bot.

Meta calls these endpoints for WhatsApp messages and delivery receipts
and for Facebook Lead Ads submissions. Deliveries are always acknowledged
so the platform does not retry a batch we already logged.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from ..services import get_services

logger = logging.getLogger(__name__)

router = APIRouter()


def _intake_for(channel: str):
    services = get_services()
    if channel not in ("whatsapp", "facebook"):
        raise HTTPException(status_code=404, detail=f"Unknown channel: {channel}")
    return services.get_intake(channel)


@router.get("/webhooks/{channel}", response_class=PlainTextResponse)
async def verify_webhook(
    channel: str,
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    """Subscription handshake: echo the challenge when the token matches."""
    intake = _intake_for(channel)
    if intake is None:
        raise HTTPException(status_code=503, detail="Webhook intake not initialized")

    challenge = intake.verify(hub_mode, hub_verify_token, hub_challenge)
    if challenge is None:
        logger.warning(f"{channel} webhook verification rejected")
        raise HTTPException(status_code=403, detail="Forbidden")

    logger.info(f"{channel} webhook verified")
    return PlainTextResponse(challenge)


@router.post("/webhooks/{channel}", response_class=PlainTextResponse)
async def receive_webhook(channel: str, request: Request):
    """
    Receive one delivery.

    The raw body is logged before parsing and each entry is processed in
    its own transaction. Failures are recorded on the log, never returned.
    """
    intake = _intake_for(channel)
    body = await request.body()

    if intake is None:
        logger.error(f"{channel} webhook received before services were initialized")
        return PlainTextResponse("OK")

    result = await intake.receive(body)
    logger.info(
        f"{channel} webhook processed",
        extra={
            "log_id": result.log_id,
            "succeeded": result.succeeded,
            "skipped": result.skipped,
            "failed": result.failed,
        },
    )
    return PlainTextResponse("OK")
