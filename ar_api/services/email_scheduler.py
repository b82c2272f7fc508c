"""
Monthly email scheduler.

A formula lists send slots as (day offset, time of day). An assignment ties a
customer to a formula and a template, anchored at start_day_of_month in the
assignment's timezone. The job runs every few minutes; a slot fires when the
local clock is within SEND_WINDOW_MINUTES of it.

Each fired slot is claimed by inserting its email_logs row with a unique
dedup_key. Overlapping runs race on that insert and only the winner sends.
"""

import calendar
from datetime import datetime, date, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.config import settings
from ar_api.models.email import (
    EmailCustomer,
    EmailCustomerAssignment,
    EmailFormula,
    EmailLog,
    EmailTemplate,
)
from ar_api.services.email_service import send_email

logger = structlog.get_logger()

SEND_WINDOW_MINUTES = 2


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or settings.DEFAULT_EMAIL_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("email_timezone_invalid", timezone=name)
        return ZoneInfo(settings.DEFAULT_EMAIL_TIMEZONE)


def _utc(now: Optional[datetime]) -> datetime:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now


def parse_send_time(send_time: str) -> tuple[int, int]:
    parts = str(send_time).split(":")
    hour, minute = int(parts[0]), int(parts[1]) if len(parts) > 1 else 0
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid send time: {send_time}")
    return hour, minute


def target_day_of_month(start_day: int, schedule_day: int, year: int, month: int) -> int:
    """start + offset - 1, clamped to the last day of the month."""
    days_in_month = calendar.monthrange(year, month)[1]
    return min(start_day + schedule_day - 1, days_in_month)


def is_time_to_send(
    start_day: int,
    schedule_day: int,
    send_time: str,
    tz_name: Optional[str],
    now: Optional[datetime] = None,
) -> bool:
    local = _utc(now).astimezone(resolve_timezone(tz_name))
    if local.day != target_day_of_month(start_day, schedule_day, local.year, local.month):
        return False

    hour, minute = parse_send_time(send_time)
    diff = abs((local.hour * 60 + local.minute) - (hour * 60 + minute))
    return diff <= SEND_WINDOW_MINUTES


def build_dedup_key(
    assignment_id: Any, local_date: date, schedule_day: int, send_time: str
) -> str:
    hour, minute = parse_send_time(send_time)
    return f"{assignment_id}:{local_date.isoformat()}:{schedule_day}:{hour:02d}{minute:02d}"


def render_template(text: str, customer_name: str, month_name: str) -> str:
    return (text or "").replace("{customer_name}", customer_name or "").replace(
        "{month}", month_name
    )


def skip_reason(
    customer: Optional[EmailCustomer],
    formula: Optional[EmailFormula],
    template: Optional[EmailTemplate],
    now: datetime,
) -> Optional[str]:
    if customer is None:
        return "Customer not found"
    if not customer.is_active:
        return "Customer is inactive"
    if customer.postpone_until is not None:
        postpone_until = customer.postpone_until
        if postpone_until.tzinfo is None:
            postpone_until = postpone_until.replace(tzinfo=timezone.utc)
        if postpone_until > now:
            return "Customer postponed"
    if customer.responded_this_month:
        return "Customer responded this month"
    if formula is None:
        return "Formula not found"
    if template is None:
        return "Template not found"
    return None


async def claim_slot(
    session: AsyncSession,
    dedup_key: str,
    assignment: EmailCustomerAssignment,
    customer: EmailCustomer,
    template: EmailTemplate,
    subject: str,
    scheduled_for: datetime,
    local_date: date,
) -> Optional[Any]:
    """Insert the pending log row; None when another run already holds the slot."""
    stmt = (
        pg_insert(EmailLog)
        .values(
            assignment_id=assignment.id,
            customer_id=customer.id,
            template_id=template.id,
            recipient_email=customer.email,
            subject=subject,
            status="pending",
            scheduled_for=scheduled_for,
            scheduled_date=local_date,
            dedup_key=dedup_key,
            created_at=datetime.utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["dedup_key"])
        .returning(EmailLog.id)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def _load_assignments(session: AsyncSession) -> list[tuple]:
    result = await session.execute(
        select(EmailCustomerAssignment, EmailCustomer, EmailFormula, EmailTemplate)
        .outerjoin(EmailCustomer, EmailCustomer.id == EmailCustomerAssignment.customer_id)
        .outerjoin(EmailFormula, EmailFormula.id == EmailCustomerAssignment.formula_id)
        .outerjoin(EmailTemplate, EmailTemplate.id == EmailCustomerAssignment.template_id)
        .where(EmailCustomerAssignment.is_active.is_(True))
    )
    return list(result.all())


async def process_email_schedule(
    session: AsyncSession, now: Optional[datetime] = None
) -> dict:
    now = _utc(now)
    naive_now = now.replace(tzinfo=None)
    results: list[dict] = []
    sent = failed = skipped = 0

    for assignment, customer, formula, template in await _load_assignments(session):
        reason = skip_reason(customer, formula, template, now)
        if reason:
            skipped += 1
            results.append(
                {
                    "assignment_id": str(assignment.id),
                    "customer_name": customer.name if customer else None,
                    "status": "skipped",
                    "reason": reason,
                }
            )
            continue

        tz = resolve_timezone(assignment.timezone)
        local_now = now.astimezone(tz)
        month_name = local_now.strftime("%B")

        for item in formula.schedule or []:
            schedule_day = int(item.get("day", 1))
            for send_time in item.get("times") or []:
                try:
                    due = is_time_to_send(
                        assignment.start_day_of_month,
                        schedule_day,
                        send_time,
                        assignment.timezone,
                        now,
                    )
                except ValueError as exc:
                    logger.warning(
                        "email_schedule_invalid_slot",
                        assignment_id=str(assignment.id),
                        error=str(exc),
                    )
                    continue
                if not due:
                    continue

                dedup_key = build_dedup_key(
                    assignment.id, local_now.date(), schedule_day, send_time
                )
                subject = render_template(template.subject, customer.name, month_name)
                log_id = await claim_slot(
                    session,
                    dedup_key,
                    assignment,
                    customer,
                    template,
                    subject,
                    naive_now,
                    local_now.date(),
                )
                if log_id is None:
                    skipped += 1
                    results.append(
                        {
                            "assignment_id": str(assignment.id),
                            "customer_name": customer.name,
                            "status": "skipped",
                            "reason": "Slot already claimed",
                            "scheduled_time": send_time,
                        }
                    )
                    continue

                body = render_template(template.body, customer.name, month_name)
                outcome = await send_email([customer.email], subject, body)

                log_row = await session.get(EmailLog, log_id)
                if outcome.success:
                    log_row.status = "sent"
                    log_row.sent_at = datetime.utcnow()
                    log_row.provider_message_id = outcome.message_id
                    sent += 1
                else:
                    log_row.status = "failed"
                    log_row.error_message = outcome.error
                    failed += 1
                await session.flush()

                results.append(
                    {
                        "assignment_id": str(assignment.id),
                        "customer_name": customer.name,
                        "status": log_row.status,
                        "scheduled_time": send_time,
                        "reason": outcome.error,
                    }
                )

    logger.info(
        "email_schedule_processed",
        sent=sent,
        failed=failed,
        skipped=skipped,
    )
    return {"sent": sent, "failed": failed, "skipped": skipped, "results": results}
