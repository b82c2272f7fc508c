# ar_api/routes/webhooks.py
"""
Inbound webhooks, authenticated with WEBHOOK_SECRET.

  - POST /acumatica/{entity}: push notification for one invoice, customer or payment
  - POST /sendgrid: SendGrid event webhook batch
"""

import hmac
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.config import settings
from ar_api.database import get_db
from ar_api.services.webhook_service import (
    WebhookPayloadError,
    process_acumatica_webhook,
    process_sendgrid_events,
)

logger = structlog.get_logger()
router = APIRouter()


async def _require_webhook_secret(request: Request):
    """SendGrid cannot set headers, so the secret may also arrive as ?token=."""
    secret = settings.WEBHOOK_SECRET
    if not secret:
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="WEBHOOK_SECRET is not configured",
        )
    provided = request.headers.get("X-Webhook-Secret") or request.query_params.get("token")
    if not provided or not hmac.compare_digest(provided, secret):
        logger.warning("webhook_auth_failed", path=request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


@router.post("/acumatica/{entity}")
async def acumatica_webhook(
    entity: str,
    payload: Any = Body(...),
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_webhook_secret),
):
    try:
        return await process_acumatica_webhook(db, entity, payload)
    except WebhookPayloadError as e:
        logger.warning("acumatica_webhook_rejected", entity=entity, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/sendgrid")
async def sendgrid_events(
    events: Any = Body(...),
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_webhook_secret),
):
    try:
        return await process_sendgrid_events(db, events)
    except WebhookPayloadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
