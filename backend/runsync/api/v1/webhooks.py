"""Strava push subscription endpoint: GET verification, POST event delivery (always acknowledged)."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from runsync.api.deps import get_webhook_gateway
from runsync.core.exceptions import WebhookVerificationFailed
from runsync.core.metrics import WEBHOOK_EVENTS
from runsync.core.rate_limit import limiter
from runsync.schemas.strava import WebhookEvent
from runsync.services.strava_webhook import StravaWebhookGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/strava", tags=["strava-webhook"])


@router.get("/webhook")
@limiter.exempt
async def verify_webhook(
    gateway: Annotated[StravaWebhookGateway, Depends(get_webhook_gateway)],
    hub_mode: Annotated[str | None, Query(alias="hub.mode")] = None,
    hub_challenge: Annotated[str | None, Query(alias="hub.challenge")] = None,
    hub_verify_token: Annotated[str | None, Query(alias="hub.verify_token")] = None,
) -> dict:
    try:
        challenge = gateway.verify_subscription(hub_mode, hub_challenge, hub_verify_token)
    except WebhookVerificationFailed:
        raise HTTPException(status_code=403, detail="Forbidden")
    return {"hub.challenge": challenge}


@router.post("/webhook", response_class=PlainTextResponse)
@limiter.exempt
async def receive_webhook(
    request: Request,
    gateway: Annotated[StravaWebhookGateway, Depends(get_webhook_gateway)],
) -> str:
    """Strava redelivers on non-2xx, so every delivery gets 200 OK; failures are logged and recorded."""
    try:
        event = WebhookEvent.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning("Ignoring malformed Strava webhook body: %s", e)
        WEBHOOK_EVENTS.labels(outcome="malformed").inc()
        return "OK"
    logger.info(
        "Received Strava webhook: %s %s object=%s owner=%s",
        event.object_type,
        event.aspect_type,
        event.object_id,
        event.owner_id,
    )
    await gateway.handle_event(event)
    return "OK"
