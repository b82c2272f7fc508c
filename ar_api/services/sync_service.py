"""
Acumatica ingestion: incremental pulls of customers, invoices and payments.

Each record is upserted inside its own savepoint so a bad row is recorded
in the sync_status errors and skipped without losing the rest of the batch.
The sync_status row for the entity tracks progress and the outcome.
"""

from datetime import datetime, date, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.config import settings
from ar_api.models.customer import AcumaticaCustomer
from ar_api.models.invoice import AcumaticaInvoice
from ar_api.models.payment import AcumaticaPayment, PaymentInvoiceApplication
from ar_api.models.sync import (
    SyncStatus,
    SyncChangeLog,
    AcumaticaSyncCredentials,
    SYNC_ACTIONS,
    SYNC_SOURCES,
    SYNC_TYPES,
)
from ar_api.services.acumatica_client import (
    AcumaticaClient,
    INVOICE_FIELD_MAP,
    CUSTOMER_FIELD_MAP,
    PAYMENT_FIELD_MAP,
    APPLICATION_FIELD_MAP,
    unwrap_fields,
)
from ar_api.services.invoice_status_service import (
    should_clear_red,
    AUTO_CLEARED_PAID_MARKER,
)
from ar_api.services.normalization import (
    normalize_reference_number,
    InvalidReferenceNumber,
    is_numeric_term,
)
from ar_api.services.ticket_service import close_tickets_when_invoices_paid

logger = structlog.get_logger()

MAX_STORED_ERRORS = 150
DEFAULT_LOOKBACK_MINUTES = 10000


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp into naive UTC."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).replace("Z", "+00:00")
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    text = str(value)
    # Acumatica dates arrive as midnight timestamps in the tenant offset
    return date.fromisoformat(text[:10])


def to_decimal(value: Any, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    if value in (None, ""):
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


# ---------------------------------------------------------------------------
# Change logging
# ---------------------------------------------------------------------------


async def log_sync_change(
    session: AsyncSession,
    sync_type: str,
    action_type: str,
    entity_id: Any = None,
    entity_reference: Optional[str] = None,
    entity_name: Optional[str] = None,
    change_summary: Optional[str] = None,
    change_details: Optional[dict] = None,
    sync_source: str = "scheduled_sync",
    user_id: Any = None,
) -> SyncChangeLog:
    """Append one row to sync_change_logs. Caller owns the transaction."""
    if sync_type not in SYNC_TYPES:
        raise ValueError(f"Invalid sync_type: {sync_type}")
    if action_type not in SYNC_ACTIONS:
        raise ValueError(f"Invalid action_type: {action_type}")
    if sync_source not in SYNC_SOURCES:
        raise ValueError(f"Invalid sync_source: {sync_source}")

    entry = SyncChangeLog(
        sync_type=sync_type,
        action_type=action_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        entity_reference=entity_reference,
        entity_name=entity_name,
        change_summary=change_summary,
        change_details=change_details or {},
        sync_source=sync_source,
        user_id=user_id,
        created_at=datetime.utcnow(),
    )
    session.add(entry)
    await session.flush()
    return entry


def classify_invoice_change(
    old_status: Optional[str], new_status: Optional[str], is_new: bool
) -> tuple[str, str]:
    """Return (action_type, summary verb) for an incoming invoice version."""
    if is_new:
        return "created", "was added"
    if old_status != new_status:
        if new_status == "Closed":
            return "closed", "was closed"
        if new_status == "Open" and old_status == "Closed":
            return "reopened", "was reopened"
        return "status_changed", f"status changed from {old_status} to {new_status}"
    return "updated", "was updated"


# ---------------------------------------------------------------------------
# sync_status bookkeeping
# ---------------------------------------------------------------------------


async def get_or_create_sync_status(session: AsyncSession, entity_type: str) -> SyncStatus:
    result = await session.execute(
        select(SyncStatus).where(SyncStatus.entity_type == entity_type)
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = SyncStatus(entity_type=entity_type, status="idle", errors=[])
        session.add(row)
        await session.flush()
    return row


async def mark_sync_started(session: AsyncSession, status_row: SyncStatus) -> None:
    status_row.status = "running"
    status_row.last_sync_started_at = datetime.utcnow()
    await session.flush()


async def mark_sync_finished(
    session: AsyncSession,
    status_row: SyncStatus,
    created: int,
    updated: int,
    errors: list[str],
) -> None:
    now = datetime.utcnow()
    status_row.status = "completed"
    status_row.last_sync_completed_at = now
    status_row.last_successful_sync = now
    status_row.records_created = created
    status_row.records_updated = updated
    status_row.records_synced = created + updated
    status_row.errors = errors[:MAX_STORED_ERRORS]
    status_row.last_error = errors[-1] if errors else None
    await session.flush()


async def mark_sync_failed(session: AsyncSession, status_row: SyncStatus, error: str) -> None:
    status_row.status = "failed"
    status_row.last_sync_completed_at = datetime.utcnow()
    status_row.last_error = error[:2000]
    await session.flush()


def running_is_stale(started_at: Optional[datetime], now: datetime) -> bool:
    if started_at is None:
        return True
    return started_at < now - timedelta(minutes=settings.SYNC_RUNNING_TIMEOUT_MINUTES)


async def claim_sync_entities(
    session: AsyncSession, entity_types: list[str], now: Optional[datetime] = None
) -> list[str]:
    """
    Mark the requested entities running and return the ones this caller won.

    An entity already running (and not stale) belongs to another run and is
    left out. The caller commits right away so the claim is visible to
    the dispatcher before the slow Acumatica pull starts.
    """
    now = now or datetime.utcnow()
    stale_before = now - timedelta(minutes=settings.SYNC_RUNNING_TIMEOUT_MINUTES)
    result = await session.execute(
        update(SyncStatus)
        .where(
            SyncStatus.entity_type.in_(entity_types),
            or_(
                SyncStatus.status != "running",
                SyncStatus.last_sync_started_at.is_(None),
                SyncStatus.last_sync_started_at < stale_before,
            ),
        )
        .values(status="running", last_sync_started_at=now)
        .returning(SyncStatus.entity_type)
        .execution_options(synchronize_session=False)
    )
    claimed = set(result.scalars().all())
    return [e for e in entity_types if e in claimed]


def _cutoff(status_row: SyncStatus, lookback_minutes: Optional[int], now: datetime) -> datetime:
    minutes = lookback_minutes or status_row.lookback_minutes or DEFAULT_LOOKBACK_MINUTES
    return now - timedelta(minutes=minutes)


# ---------------------------------------------------------------------------
# Record mapping
# ---------------------------------------------------------------------------


def map_invoice(record: dict) -> dict:
    raw = unwrap_fields(record, INVOICE_FIELD_MAP)
    return {
        "reference_number": normalize_reference_number(raw.get("reference_number")),
        "type": raw.get("type"),
        "status": raw.get("status"),
        "date": parse_date(raw.get("date")),
        "due_date": parse_date(raw.get("due_date")),
        "post_period": raw.get("post_period"),
        "customer": raw.get("customer"),
        "customer_name": raw.get("customer_name"),
        "customer_order": raw.get("customer_order"),
        "currency": raw.get("currency"),
        "amount": to_decimal(raw.get("amount")),
        "balance": to_decimal(raw.get("balance")),
        "terms": raw.get("terms"),
        "description": raw.get("description"),
        "last_modified_datetime": parse_datetime(raw.get("last_modified_datetime")),
        "raw_data": record,
    }


def map_customer(record: dict) -> dict:
    raw = unwrap_fields(record, CUSTOMER_FIELD_MAP)
    customer_id = (raw.get("customer_id") or "").strip()
    if not customer_id:
        raise ValueError("Customer missing CustomerID")
    values = {
        "customer_id": customer_id,
        "customer_name": raw.get("customer_name"),
        "customer_status": raw.get("customer_status"),
        "customer_class": raw.get("customer_class"),
        "terms": raw.get("terms"),
        "credit_limit": to_decimal(raw.get("credit_limit"), default=None),
        "general_email": raw.get("general_email"),
        "last_modified_datetime": parse_datetime(raw.get("last_modified_datetime")),
        "raw_data": record,
    }
    contact = record.get("MainContact") or {}
    email = (contact.get("Email") or {}).get("value") if isinstance(contact, dict) else None
    if email and not values["general_email"]:
        values["general_email"] = email
    return values


def normalize_document_reference(value: Any) -> str:
    """Pad numeric references; leave other document numbers as they are."""
    text = str(value or "").strip()
    if not text:
        raise InvalidReferenceNumber("Reference number is required")
    if is_numeric_term(text) and len(text) <= 6:
        return normalize_reference_number(text)
    return text


def map_payment(record: dict) -> dict:
    raw = unwrap_fields(record, PAYMENT_FIELD_MAP)
    if not raw.get("reference_number") or not raw.get("type"):
        raise ValueError("Payment missing ReferenceNbr or Type")
    application_date = raw.get("application_date")
    if application_date is None:
        application_date = (record.get("PaymentDate") or {}).get("value")
    return {
        "reference_number": normalize_document_reference(raw["reference_number"]),
        "type": raw["type"],
        "status": raw.get("status"),
        "application_date": parse_datetime(application_date),
        "payment_amount": to_decimal(raw.get("payment_amount")),
        "available_balance": to_decimal(raw.get("available_balance")),
        "customer_id": raw.get("customer_id"),
        "payment_method": raw.get("payment_method"),
        "payment_ref": raw.get("payment_ref"),
        "description": raw.get("description"),
        "last_modified_datetime": parse_datetime(raw.get("last_modified_datetime")),
        "raw_data": record,
    }


def map_application(record: dict) -> dict:
    raw = unwrap_fields(record, APPLICATION_FIELD_MAP)
    invoice_ref = raw.get("invoice_reference_number")
    if invoice_ref is None:
        for fallback in ("ReferenceNbr", "AdjustedRefNbr"):
            invoice_ref = (record.get(fallback) or {}).get("value")
            if invoice_ref:
                break
    return {
        "invoice_reference_number": normalize_document_reference(invoice_ref),
        "doc_type": raw.get("doc_type") or "Invoice",
        "amount_paid": to_decimal(raw.get("amount_paid")),
        "application_date": parse_datetime(raw.get("application_date")),
        "balance": to_decimal(raw.get("balance")),
        "cash_discount_taken": to_decimal(raw.get("cash_discount_taken")),
    }


# ---------------------------------------------------------------------------
# Upserts
# ---------------------------------------------------------------------------


async def upsert_invoice(
    session: AsyncSession, values: dict, sync_source: str = "scheduled_sync"
) -> str:
    """Insert or update one invoice; returns the action type logged."""
    ref = values["reference_number"]
    existing = (
        await session.execute(
            select(
                AcumaticaInvoice.status,
                AcumaticaInvoice.balance,
                AcumaticaInvoice.color_status,
            ).where(AcumaticaInvoice.reference_number == ref)
        )
    ).one_or_none()

    now = datetime.utcnow()
    row = dict(values, synced_at=now, updated_at=now)
    if existing is not None and should_clear_red(
        existing.balance, values.get("balance"), existing.color_status
    ):
        row["color_status"] = None
        row["last_modified_by_color"] = AUTO_CLEARED_PAID_MARKER

    stmt = pg_insert(AcumaticaInvoice).values(**row)
    stmt = stmt.on_conflict_do_update(
        index_elements=[AcumaticaInvoice.reference_number],
        set_={k: stmt.excluded[k] for k in row if k != "reference_number"},
    ).returning(AcumaticaInvoice.id)
    invoice_id = (await session.execute(stmt)).scalar_one()

    action, verb = classify_invoice_change(
        existing.status if existing is not None else None,
        values.get("status"),
        existing is None,
    )
    await log_sync_change(
        session,
        sync_type="invoice",
        action_type=action,
        entity_id=invoice_id,
        entity_reference=ref,
        entity_name=values.get("customer_name"),
        change_summary=f"Invoice {ref} {verb}",
        change_details={
            "status": values.get("status"),
            "balance": str(values.get("balance")),
            "old_status": existing.status if existing is not None else None,
        },
        sync_source=sync_source,
    )

    new_balance = values.get("balance") or Decimal("0")
    if values.get("status") == "Closed" or new_balance <= 0:
        await close_tickets_when_invoices_paid(session, ref)
    return action


async def upsert_customer(
    session: AsyncSession, values: dict, sync_source: str = "scheduled_sync"
) -> str:
    customer_id = values["customer_id"]
    existing_id = (
        await session.execute(
            select(AcumaticaCustomer.id).where(AcumaticaCustomer.customer_id == customer_id)
        )
    ).scalar_one_or_none()

    now = datetime.utcnow()
    row = dict(values, synced_at=now, updated_at=now)
    stmt = pg_insert(AcumaticaCustomer).values(**row)
    stmt = stmt.on_conflict_do_update(
        index_elements=[AcumaticaCustomer.customer_id],
        set_={k: stmt.excluded[k] for k in row if k != "customer_id"},
    ).returning(AcumaticaCustomer.id)
    row_id = (await session.execute(stmt)).scalar_one()

    action = "updated" if existing_id else "created"
    await log_sync_change(
        session,
        sync_type="customer",
        action_type=action,
        entity_id=row_id,
        entity_reference=customer_id,
        entity_name=values.get("customer_name") or customer_id,
        change_summary=(
            f"Customer {customer_id} was updated"
            if existing_id
            else f"New customer {customer_id} was added"
        ),
        change_details={"status": values.get("customer_status")},
        sync_source=sync_source,
    )
    return action


async def upsert_payment(
    session: AsyncSession, values: dict, sync_source: str = "scheduled_sync"
) -> tuple[str, Any]:
    ref, payment_type = values["reference_number"], values["type"]
    old_status = (
        await session.execute(
            select(AcumaticaPayment.status).where(
                AcumaticaPayment.reference_number == ref,
                AcumaticaPayment.type == payment_type,
            )
        )
    ).one_or_none()

    now = datetime.utcnow()
    row = dict(values, synced_at=now, updated_at=now)
    stmt = pg_insert(AcumaticaPayment).values(**row)
    stmt = stmt.on_conflict_do_update(
        index_elements=[AcumaticaPayment.reference_number, AcumaticaPayment.type],
        set_={k: stmt.excluded[k] for k in row if k not in ("reference_number", "type")},
    ).returning(AcumaticaPayment.id)
    payment_id = (await session.execute(stmt)).scalar_one()

    if old_status is None:
        action, summary = "created", f"New payment {ref} was added"
    elif old_status.status != values.get("status"):
        action = "status_changed"
        summary = f"Payment {ref} status changed from {old_status.status} to {values.get('status')}"
    else:
        action, summary = "updated", f"Payment {ref} was updated"

    await log_sync_change(
        session,
        sync_type="payment",
        action_type=action,
        entity_id=payment_id,
        entity_reference=ref,
        entity_name=values.get("customer_id"),
        change_summary=summary,
        change_details={
            "type": payment_type,
            "status": values.get("status"),
            "amount": str(values.get("payment_amount")),
        },
        sync_source=sync_source,
    )
    return action, payment_id


async def upsert_payment_application(
    session: AsyncSession,
    payment_id: Any,
    payment_reference_number: str,
    customer_id: Optional[str],
    application: dict,
) -> None:
    """Idempotent on (payment_id, invoice_reference_number)."""
    row = dict(
        application,
        payment_id=payment_id,
        payment_reference_number=payment_reference_number,
        customer_id=customer_id or "",
        updated_at=datetime.utcnow(),
    )
    stmt = pg_insert(PaymentInvoiceApplication).values(**row)
    stmt = stmt.on_conflict_do_update(
        constraint="uq_payment_invoice_application",
        set_={
            k: stmt.excluded[k]
            for k in row
            if k not in ("payment_id", "invoice_reference_number")
        },
    )
    await session.execute(stmt)


# ---------------------------------------------------------------------------
# Entity sync loops
# ---------------------------------------------------------------------------


async def _run_entity_sync(
    session: AsyncSession,
    entity_type: str,
    fetch,
    process,
    lookback_minutes: Optional[int],
    now: Optional[datetime],
) -> dict:
    status_row = await get_or_create_sync_status(session, entity_type)
    await mark_sync_started(session, status_row)
    now = now or datetime.utcnow()
    cutoff = _cutoff(status_row, lookback_minutes, now)

    try:
        records = await fetch(cutoff)
    except Exception as exc:
        logger.error("acumatica_sync_fetch_failed", entity_type=entity_type, error=str(exc))
        await mark_sync_failed(session, status_row, str(exc))
        return {
            "entity_type": entity_type,
            "status": "failed",
            "error": str(exc),
            "fetched": 0,
            "created": 0,
            "updated": 0,
            "errors": [str(exc)],
        }

    created = updated = 0
    errors: list[str] = []
    for record in records:
        try:
            async with session.begin_nested():
                action = await process(record)
        except Exception as exc:
            errors.append(str(exc))
            logger.warning("acumatica_sync_record_failed", entity_type=entity_type, error=str(exc))
            continue
        if action == "created":
            created += 1
        else:
            updated += 1

    await mark_sync_finished(session, status_row, created, updated, errors)
    logger.info(
        "acumatica_sync_completed",
        entity_type=entity_type,
        fetched=len(records),
        created=created,
        updated=updated,
        errors=len(errors),
    )
    return {
        "entity_type": entity_type,
        "status": "completed",
        "since": cutoff.isoformat(),
        "fetched": len(records),
        "created": created,
        "updated": updated,
        "errors": errors[:MAX_STORED_ERRORS],
    }


async def sync_invoices(
    session: AsyncSession,
    client: AcumaticaClient,
    lookback_minutes: Optional[int] = None,
    sync_source: str = "scheduled_sync",
    now: Optional[datetime] = None,
) -> dict:
    async def process(record: dict) -> str:
        return await upsert_invoice(session, map_invoice(record), sync_source)

    return await _run_entity_sync(
        session, "invoice", client.fetch_invoices, process, lookback_minutes, now
    )


async def sync_customers(
    session: AsyncSession,
    client: AcumaticaClient,
    lookback_minutes: Optional[int] = None,
    sync_source: str = "scheduled_sync",
    now: Optional[datetime] = None,
) -> dict:
    async def process(record: dict) -> str:
        return await upsert_customer(session, map_customer(record), sync_source)

    return await _run_entity_sync(
        session, "customer", client.fetch_customers, process, lookback_minutes, now
    )


async def sync_payments(
    session: AsyncSession,
    client: AcumaticaClient,
    lookback_minutes: Optional[int] = None,
    sync_source: str = "scheduled_sync",
    now: Optional[datetime] = None,
) -> dict:
    async def process(record: dict) -> str:
        values = map_payment(record)
        action, payment_id = await upsert_payment(session, values, sync_source)
        history = await client.fetch_payment_applications(
            values["reference_number"], values["type"]
        )
        for entry in history:
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
        return action

    return await _run_entity_sync(
        session, "payment", client.fetch_payments, process, lookback_minutes, now
    )


ENTITY_SYNCS = {
    "customer": sync_customers,
    "invoice": sync_invoices,
    "payment": sync_payments,
}


async def get_active_credentials(session: AsyncSession) -> Optional[AcumaticaSyncCredentials]:
    result = await session.execute(
        select(AcumaticaSyncCredentials)
        .where(AcumaticaSyncCredentials.is_active.is_(True))
        .order_by(AcumaticaSyncCredentials.updated_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def run_incremental_sync(
    session: AsyncSession,
    entity_types: Optional[list[str]] = None,
    lookback_minutes: Optional[int] = None,
    sync_source: str = "scheduled_sync",
    client: Optional[AcumaticaClient] = None,
) -> dict:
    """Pull every requested entity type through one Acumatica session."""
    entity_types = entity_types or ["customer", "invoice", "payment"]
    unknown = [e for e in entity_types if e not in ENTITY_SYNCS]
    if unknown:
        raise ValueError(f"Unknown entity types: {', '.join(unknown)}")

    if client is None:
        credentials = await get_active_credentials(session)
        if credentials is None:
            logger.warning("acumatica_sync_skipped_no_credentials")
            return {"status": "skipped", "reason": "no_credentials", "results": {}}
        client = AcumaticaClient.from_credentials(credentials)

    results: dict[str, dict] = {}
    try:
        async with client:
            for entity_type in entity_types:
                results[entity_type] = await ENTITY_SYNCS[entity_type](
                    session,
                    client,
                    lookback_minutes=lookback_minutes,
                    sync_source=sync_source,
                )
    except Exception as exc:
        logger.error("acumatica_sync_failed", error=str(exc))
        for entity_type in entity_types:
            if entity_type not in results:
                status_row = await get_or_create_sync_status(session, entity_type)
                await mark_sync_failed(session, status_row, str(exc))
        return {"status": "failed", "error": str(exc), "results": results}

    return {"status": "completed", "results": results}
