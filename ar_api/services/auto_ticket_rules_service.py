"""
Auto-ticket rules: per-customer rules that gather overdue invoices into a
collector's ticket.

Each rule selects invoices by age, by how recently the customer last paid,
or a combination (condition_logic). A failing rule is recorded in the run
summary and rolled back to its savepoint; the remaining rules still run.
"""

from datetime import datetime, date, timedelta
from typing import Any, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.models.auto_ticket_rule import AutoTicketRule, CONDITION_LOGIC
from ar_api.models.invoice import AcumaticaInvoice
from ar_api.models.payment import AcumaticaPayment
from ar_api.models.ticket import CollectionTicket
from ar_api.services.ticket_service import (
    CLOSED_STATUS,
    add_invoices_to_ticket,
    create_ticket,
    ticket_invoice_refs,
)

logger = structlog.get_logger()

NO_PAYMENT_DAYS = 999999
AUTO_TICKET_TYPE = "overdue payment"


def payment_recency_matches(
    last_payment_date: Optional[date],
    today: date,
    min_days: Optional[int],
    max_days: Optional[int],
) -> bool:
    """Days since the last payment fall inside [min_days, max_days].

    A customer who never paid counts as NO_PAYMENT_DAYS days ago.
    """
    if isinstance(last_payment_date, datetime):
        last_payment_date = last_payment_date.date()
    days = (today - last_payment_date).days if last_payment_date else NO_PAYMENT_DAYS
    low = min_days if min_days is not None else 0
    high = max_days if max_days is not None else NO_PAYMENT_DAYS
    return low <= days <= high


def resolve_rule_invoices(
    logic: str,
    age_refs: list[str],
    open_refs: list[str],
    payment_match: bool,
) -> list[str]:
    """Combine the age-based and payment-based selections for one rule."""
    if logic not in CONDITION_LOGIC:
        raise ValueError(f"Unknown condition_logic: {logic}")

    if logic == "invoice_only":
        return list(age_refs)
    if logic == "payment_only":
        return list(open_refs) if payment_match else []
    if logic == "both_and":
        return list(age_refs) if payment_match else []
    # both_or
    if payment_match:
        return list(dict.fromkeys(list(age_refs) + list(open_refs)))
    return list(age_refs)


def _open_invoice_conditions(customer_id: str) -> list:
    return [
        AcumaticaInvoice.customer == customer_id,
        AcumaticaInvoice.type == "Invoice",
        AcumaticaInvoice.status == "Open",
        AcumaticaInvoice.balance > 0,
    ]


async def _age_refs(session: AsyncSession, rule: AutoTicketRule, today: date) -> list[str]:
    conditions = _open_invoice_conditions(rule.customer_id)
    if rule.min_days_old is not None:
        conditions.append(AcumaticaInvoice.date <= today - timedelta(days=rule.min_days_old))
    if rule.max_days_old is not None:
        conditions.append(AcumaticaInvoice.date >= today - timedelta(days=rule.max_days_old))
    result = await session.execute(
        select(AcumaticaInvoice.reference_number)
        .where(*conditions)
        .order_by(AcumaticaInvoice.date.asc().nulls_last())
    )
    return list(result.scalars().all())


async def _open_refs(session: AsyncSession, rule: AutoTicketRule) -> list[str]:
    result = await session.execute(
        select(AcumaticaInvoice.reference_number)
        .where(*_open_invoice_conditions(rule.customer_id))
        .order_by(AcumaticaInvoice.date.asc().nulls_last())
    )
    return list(result.scalars().all())


async def _last_payment_date(session: AsyncSession, customer_id: str) -> Optional[datetime]:
    result = await session.execute(
        select(func.max(AcumaticaPayment.application_date)).where(
            AcumaticaPayment.customer_id == customer_id,
            AcumaticaPayment.type == "Payment",
        )
    )
    return result.scalar()


async def _find_open_ticket(
    session: AsyncSession, customer_id: str, collector_id: Any
) -> Optional[CollectionTicket]:
    result = await session.execute(
        select(CollectionTicket)
        .where(
            CollectionTicket.customer_id == customer_id,
            CollectionTicket.assigned_collector_id == collector_id,
            CollectionTicket.status != CLOSED_STATUS,
        )
        .order_by(CollectionTicket.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def apply_rule(session: AsyncSession, rule: AutoTicketRule, today: date) -> dict:
    """Run one rule. Returns {"created": bool, "updated": bool, "added": int}."""
    uses_payment = rule.condition_logic != "invoice_only"
    payment_match = False
    if uses_payment:
        last_payment = await _last_payment_date(session, rule.customer_id)
        payment_match = payment_recency_matches(
            last_payment,
            today,
            rule.check_payment_within_days_min,
            rule.check_payment_within_days_max,
        )

    age_refs = (
        await _age_refs(session, rule, today) if rule.condition_logic != "payment_only" else []
    )
    open_refs = (
        await _open_refs(session, rule)
        if payment_match and rule.condition_logic in ("payment_only", "both_or")
        else []
    )
    refs = resolve_rule_invoices(rule.condition_logic, age_refs, open_refs, payment_match)

    outcome = {"created": False, "updated": False, "added": 0}
    rule.last_run_at = datetime.utcnow()
    if not refs:
        await session.flush()
        return outcome

    ticket = await _find_open_ticket(session, rule.customer_id, rule.assigned_collector_id)
    if ticket is not None:
        existing = set(await ticket_invoice_refs(session, ticket.id))
        new_refs = [r for r in refs if r not in existing]
        if new_refs:
            added = await add_invoices_to_ticket(
                session,
                ticket,
                new_refs,
                rule.created_by,
                activity_description=f"Auto-rule added {len(new_refs)} invoice(s)",
            )
            outcome.update(updated=True, added=len(added))
    else:
        ticket = await create_ticket(
            session,
            customer_id=rule.customer_id,
            created_by=rule.created_by,
            assigned_collector_id=rule.assigned_collector_id,
            invoice_reference_numbers=refs,
            priority="medium",
            ticket_type=AUTO_TICKET_TYPE,
            status="open",
        )
        outcome.update(created=True, added=len(refs))

    await session.flush()
    return outcome


async def process_auto_ticket_rules(
    session: AsyncSession, today: Optional[date] = None
) -> dict:
    today = today or datetime.utcnow().date()
    result = await session.execute(
        select(AutoTicketRule)
        .where(AutoTicketRule.active.is_(True))
        .order_by(AutoTicketRule.created_at)
    )
    rules = list(result.scalars().all())

    summary = {
        "processed": 0,
        "tickets_created": 0,
        "tickets_updated": 0,
        "invoices_added": 0,
        "errors": [],
    }
    for rule in rules:
        # A savepoint rollback expires the rule; read these before it can happen
        rule_id, customer_id = rule.id, rule.customer_id
        try:
            async with session.begin_nested():
                outcome = await apply_rule(session, rule, today)
        except Exception as exc:
            summary["errors"].append(f"Rule {rule_id} ({customer_id}): {exc}")
            logger.error(
                "auto_ticket_rule_failed",
                rule_id=str(rule_id),
                customer_id=customer_id,
                error=str(exc),
            )
            continue

        summary["processed"] += 1
        summary["tickets_created"] += int(outcome["created"])
        summary["tickets_updated"] += int(outcome["updated"])
        summary["invoices_added"] += outcome["added"]

    logger.info(
        "auto_ticket_rules_processed",
        processed=summary["processed"],
        tickets_created=summary["tickets_created"],
        tickets_updated=summary["tickets_updated"],
        invoices_added=summary["invoices_added"],
        errors=len(summary["errors"]),
    )
    return summary
