"""
Inbound webhooks: Acumatica push notifications and SendGrid delivery events.

Acumatica pushes a single changed record; it goes through the same mappers and
upserts as the scheduled pull, logged with sync_source "webhook". SendGrid
posts batches of events that advance the matching email_logs row.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.models.email import EmailLog
from ar_api.services.normalization import InvalidReferenceNumber
from ar_api.services.sync_service import (
    map_application,
    map_customer,
    map_invoice,
    map_payment,
    upsert_customer,
    upsert_invoice,
    upsert_payment,
    upsert_payment_application,
)

logger = structlog.get_logger()

WEBHOOK_SOURCE = "webhook"
WEBHOOK_ENTITIES = ("invoice", "customer", "payment")


class WebhookPayloadError(ValueError):
    """Raised when a webhook body cannot be turned into a record."""


# ---------------------------------------------------------------------------
# Acumatica
# ---------------------------------------------------------------------------


def extract_entity(payload: Any) -> dict:
    """
    Pull the changed record out of an Acumatica push notification.

    Push notifications wrap the record as {"Entity": {...}} or list it under
    "Inserted"; a bare record is accepted too.
    """
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")
    if isinstance(payload.get("Entity"), dict):
        return payload["Entity"]
    inserted = payload.get("Inserted")
    if isinstance(inserted, list) and inserted and isinstance(inserted[0], dict):
        return inserted[0]
    return payload


async def _apply_payment(session: AsyncSession, record: dict) -> tuple[str, str]:
    values = map_payment(record)
    action, payment_id = await upsert_payment(session, values, WEBHOOK_SOURCE)
    for entry in record.get("ApplicationHistory") or []:
        try:
            application = map_application(entry)
        except InvalidReferenceNumber:
            continue
        await upsert_payment_application(
            session,
            payment_id,
            values["reference_number"],
            values.get("customer_id"),
            application,
        )
    return action, values["reference_number"]


async def process_acumatica_webhook(session: AsyncSession, entity: str, payload: Any) -> dict:
    if entity not in WEBHOOK_ENTITIES:
        raise WebhookPayloadError(f"Unsupported entity: {entity}")
    record = extract_entity(payload)

    try:
        if entity == "invoice":
            values = map_invoice(record)
            action = await upsert_invoice(session, values, WEBHOOK_SOURCE)
            reference = values["reference_number"]
        elif entity == "customer":
            values = map_customer(record)
            action = await upsert_customer(session, values, WEBHOOK_SOURCE)
            reference = values["customer_id"]
        else:
            action, reference = await _apply_payment(session, record)
    except ValueError as e:
        raise WebhookPayloadError(str(e))

    await session.flush()
    logger.info("acumatica_webhook_applied", entity=entity, reference=reference, action=action)
    return {"entity": entity, "reference": reference, "action": action}


# ---------------------------------------------------------------------------
# SendGrid
# ---------------------------------------------------------------------------


def base_message_id(sg_message_id: Optional[str]) -> Optional[str]:
    """sg_message_id is the send-time X-Message-Id followed by ".filter..." parts."""
    if not sg_message_id:
        return None
    return sg_message_id.split(".", 1)[0]


def _event_time(event: dict) -> datetime:
    ts = event.get("timestamp")
    if ts is None:
        return datetime.utcnow()
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)


def apply_email_event(log: EmailLog, event: dict) -> bool:
    """Advance one email_logs row; returns False for events that change nothing."""
    kind = event.get("event")
    at = _event_time(event)

    if kind == "delivered":
        log.delivered_at = at
        if log.status == "sent":
            log.status = "delivered"
    elif kind == "open":
        if not log.open_count:
            log.opened_at = at
        log.open_count = (log.open_count or 0) + 1
        log.status = "opened"
    elif kind == "click":
        if not log.click_count:
            log.clicked_at = at
        log.click_count = (log.click_count or 0) + 1
        log.status = "clicked"
    elif kind in ("bounce", "dropped"):
        log.bounced_at = at
        log.bounce_reason = event.get("reason") or event.get("response") or "Unknown"
        log.status = "bounced"
    else:
        # processed, deferred and engagement events we do not track
        return False
    return True


async def process_sendgrid_events(session: AsyncSession, events: Any) -> dict:
    if not isinstance(events, list):
        raise WebhookPayloadError("SendGrid posts a JSON array of events")

    updated = skipped = 0
    for event in events:
        message_id = base_message_id(event.get("sg_message_id")) if isinstance(event, dict) else None
        if message_id is None:
            skipped += 1
            continue
        result = await session.execute(
            select(EmailLog)
            .where(EmailLog.provider_message_id == message_id)
            .order_by(EmailLog.created_at.desc())
            .limit(1)
        )
        log = result.scalar_one_or_none()
        if log is None:
            logger.debug("sendgrid_event_unmatched", message_id=message_id)
            skipped += 1
            continue
        if apply_email_event(log, event):
            updated += 1
        else:
            skipped += 1

    await session.flush()
    logger.info("sendgrid_events_processed", received=len(events), updated=updated, skipped=skipped)
    return {"received": len(events), "updated": updated, "skipped": skipped}
