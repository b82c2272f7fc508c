"""
Invoice status service: color statuses, payment promises, auto-red escalation.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional, Any

from fastapi import HTTPException
from sqlalchemy import select, update, func, and_, or_, exists, literal, cast, Date
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.config import settings
from ar_api.models.customer import AcumaticaCustomer
from ar_api.models.invoice import AcumaticaInvoice, InvoiceColorStatusOption
from ar_api.services.activity_service import log_invoice_activity, log_user_activity
from ar_api.services.normalization import normalize_reference_number, InvalidReferenceNumber

logger = structlog.get_logger()

RED = "red"
GREEN = "green"

AUTO_THRESHOLD_MARKER = "system_auto_threshold"
AUTO_UNTOUCHED_MARKER = "system_auto_untouched"
AUTO_CLEARED_PAID_MARKER = "system_auto_cleared_paid"

# Values accepted as "remove the color"
_CLEAR_VALUES = {None, "", "none", "null"}


def _today() -> date:
    return datetime.utcnow().date()


async def get_invoice_by_reference(
    session: AsyncSession, reference_number: str, for_update: bool = False
) -> AcumaticaInvoice:
    """Look an invoice up by any accepted spelling of its reference number."""
    try:
        ref = normalize_reference_number(reference_number)
    except InvalidReferenceNumber as e:
        raise HTTPException(status_code=400, detail=str(e))
    q = select(AcumaticaInvoice).where(AcumaticaInvoice.reference_number == ref)
    if for_update:
        q = q.with_for_update()
    invoice = (await session.execute(q)).scalar_one_or_none()
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


async def get_color_option(
    session: AsyncSession, status_name: str
) -> Optional[InvoiceColorStatusOption]:
    result = await session.execute(
        select(InvoiceColorStatusOption).where(
            InvoiceColorStatusOption.status_name == status_name
        )
    )
    return result.scalar_one_or_none()


async def apply_color_status(
    session: AsyncSession,
    invoice: AcumaticaInvoice,
    status_name: Optional[str],
    user_id: Any,
) -> AcumaticaInvoice:
    """Set (or clear) the color status of one invoice on behalf of a user."""
    new_status = None if status_name in _CLEAR_VALUES else status_name.strip().lower()

    if new_status is not None:
        option = await get_color_option(session, new_status)
        if not option or not option.is_active:
            raise HTTPException(
                status_code=400,
                detail=f"Unknown or inactive color status '{status_name}'",
            )

    old_status = invoice.color_status
    if old_status == new_status:
        return invoice

    now = datetime.utcnow()
    invoice.color_status = new_status
    invoice.last_modified_by_color = str(user_id) if user_id else None
    invoice.last_touched_date = now
    await session.flush()

    await log_invoice_activity(
        session,
        invoice_id=invoice.id,
        activity_type="color_status_changed",
        description=f"Color status changed from {old_status or 'none'} to {new_status or 'none'}",
        user_id=user_id,
        old_value=old_status,
        new_value=new_status,
    )
    await log_user_activity(
        session,
        user_id=user_id,
        action_type="invoice_color_changed",
        entity_type="invoice",
        entity_id=invoice.reference_number,
        details={"old_status": old_status, "new_status": new_status},
    )

    logger.info(
        "invoice_color_status_applied",
        reference_number=invoice.reference_number,
        old_status=old_status,
        new_status=new_status,
    )
    return invoice


async def set_promise_date(
    session: AsyncSession,
    invoice: AcumaticaInvoice,
    promise_date: Optional[date],
    user_id: Any,
) -> AcumaticaInvoice:
    """Record (or clear) a customer's promise to pay an invoice."""
    old_date = invoice.promise_date
    invoice.promise_date = promise_date
    invoice.promise_by = user_id if promise_date else None
    invoice.last_touched_date = datetime.utcnow()
    await session.flush()

    await log_invoice_activity(
        session,
        invoice_id=invoice.id,
        activity_type="promise_date_set" if promise_date else "promise_date_cleared",
        description=(
            f"Promise date set to {promise_date.isoformat()}"
            if promise_date
            else "Promise date cleared"
        ),
        user_id=user_id,
        old_value=old_date.isoformat() if old_date else None,
        new_value=promise_date.isoformat() if promise_date else None,
    )
    await log_user_activity(
        session,
        user_id=user_id,
        action_type="invoice_promise_date_set",
        entity_type="invoice",
        entity_id=invoice.reference_number,
        details={
            "old_promise_date": old_date.isoformat() if old_date else None,
            "new_promise_date": promise_date.isoformat() if promise_date else None,
        },
    )
    return invoice


def is_promise_broken(invoice, now: Optional[datetime] = None) -> bool:
    """Green invoice whose promise date has passed and still carries a balance."""
    if invoice.color_status != GREEN or invoice.promise_date is None:
        return False
    today = (now or datetime.utcnow()).date()
    return invoice.promise_date < today and Decimal(invoice.balance or 0) > 0


def broken_promise_clause(today: date):
    return and_(
        AcumaticaInvoice.color_status == GREEN,
        AcumaticaInvoice.promise_date.is_not(None),
        AcumaticaInvoice.promise_date < today,
        AcumaticaInvoice.balance > 0,
    )


async def list_broken_promises(
    session: AsyncSession,
    today: Optional[date] = None,
    customer: Optional[str] = None,
    limit: int = 100,
) -> list[AcumaticaInvoice]:
    q = select(AcumaticaInvoice).where(broken_promise_clause(today or _today()))
    if customer:
        q = q.where(AcumaticaInvoice.customer == customer)
    result = await session.execute(
        q.order_by(AcumaticaInvoice.promise_date.asc()).limit(limit)
    )
    return list(result.scalars().all())


def _threshold_days():
    # Only a NULL threshold falls back to the default; a missing customer row
    # is excluded by _auto_red_base_conditions
    customer_threshold = (
        select(AcumaticaCustomer.days_from_invoice_threshold)
        .where(AcumaticaCustomer.customer_id == AcumaticaInvoice.customer)
        .limit(1)
        .scalar_subquery()
    )
    return func.coalesce(
        customer_threshold, literal(settings.DEFAULT_RED_THRESHOLD_DAYS)
    )


def _days_since(today: date, column):
    return cast(literal(today), Date) - column


def _auto_red_base_conditions():
    return [
        AcumaticaInvoice.status == "Open",
        AcumaticaInvoice.balance > 0,
        or_(
            AcumaticaInvoice.color_status.is_(None),
            AcumaticaInvoice.color_status != RED,
        ),
        exists().where(AcumaticaCustomer.customer_id == AcumaticaInvoice.customer),
    ]


async def _mark_red(
    session: AsyncSession, conditions: list, marker: str
) -> tuple[int, list[str]]:
    stmt = (
        update(AcumaticaInvoice)
        .where(*conditions)
        .values(
            color_status=RED,
            last_modified_by_color=marker,
            updated_at=datetime.utcnow(),
        )
        .returning(AcumaticaInvoice.reference_number)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    refs = sorted(r for r in result.scalars().all())
    await session.flush()
    return len(refs), refs


async def auto_update_invoice_red_status(
    session: AsyncSession, today: Optional[date] = None
) -> tuple[int, list[str]]:
    """
    Escalate open invoices to red once they are older than the customer's
    threshold (days since invoice date, default 30).

    Only invoices with a positive balance that are not already red are
    touched. Returns (updated_count, reference_numbers).
    """
    today = today or _today()
    conditions = _auto_red_base_conditions() + [
        AcumaticaInvoice.date.is_not(None),
        _days_since(today, AcumaticaInvoice.date) >= _threshold_days(),
    ]
    count, refs = await _mark_red(session, conditions, AUTO_THRESHOLD_MARKER)
    logger.info("invoice_red_status_applied", rule="threshold", updated=count)
    return count, refs


async def auto_red_untouched(
    session: AsyncSession, today: Optional[date] = None
) -> tuple[int, list[str]]:
    """Same threshold, measured from the last collector touch when there is one."""
    today = today or _today()
    touched_day = cast(AcumaticaInvoice.last_touched_date, Date)
    conditions = _auto_red_base_conditions() + [
        AcumaticaInvoice.last_touched_date.is_not(None),
        _days_since(today, touched_day) >= _threshold_days(),
    ]
    count, refs = await _mark_red(session, conditions, AUTO_UNTOUCHED_MARKER)
    logger.info("invoice_red_status_applied", rule="untouched", updated=count)
    return count, refs


async def run_auto_red_status_checks(
    session: AsyncSession, today: Optional[date] = None
) -> dict:
    today = today or _today()
    threshold_count, threshold_refs = await auto_update_invoice_red_status(
        session, today
    )
    untouched_count, untouched_refs = await auto_red_untouched(session, today)
    return {
        "run_date": today.isoformat(),
        "threshold": {"updated": threshold_count, "reference_numbers": threshold_refs},
        "untouched": {"updated": untouched_count, "reference_numbers": untouched_refs},
        "total_updated": threshold_count + untouched_count,
    }


def should_clear_red(old_balance, new_balance, color_status: Optional[str]) -> bool:
    """A red invoice that has just been paid off drops its color."""
    if color_status != RED:
        return False
    old_balance = Decimal(old_balance or 0)
    new_balance = Decimal(new_balance or 0)
    return old_balance > 0 and new_balance <= 0
