"""
Invoice search: filtered, sorted, paginated queries over acumatica_invoices.

Numeric terms match reference numbers exactly (raw or zero-padded); any
other term is a case-insensitive substring match on reference number or
customer name, served by the trigram indexes.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select, func, or_, case
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.models.customer import AcumaticaCustomer
from ar_api.models.invoice import AcumaticaInvoice
from ar_api.models.payment import AcumaticaPayment
from ar_api.services.invoice_status_service import broken_promise_clause
from ar_api.services.normalization import search_reference_candidates

logger = structlog.get_logger()

MAX_PAGE_SIZE = 50

SORT_COLUMNS = {
    "date": AcumaticaInvoice.date,
    "due_date": AcumaticaInvoice.due_date,
    "balance": AcumaticaInvoice.balance,
    "amount": AcumaticaInvoice.amount,
    "reference_number": AcumaticaInvoice.reference_number,
    "customer_name": AcumaticaInvoice.customer_name,
    "status": AcumaticaInvoice.status,
    "type": AcumaticaInvoice.type,
    "color": AcumaticaInvoice.color_status,
}

BALANCE_FILTERS = ("all", "paid", "unpaid")


@dataclass
class InvoiceSearchFilters:
    search_term: Optional[str] = None
    status: Optional[str] = None
    customer: Optional[str] = None
    customer_ids: list[str] = field(default_factory=list)
    balance: str = "all"
    color: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    broken_promises_only: bool = False
    sort_by: str = "date"
    sort_order: str = "desc"
    limit: int = MAX_PAGE_SIZE
    offset: int = 0


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_search_conditions(filters: InvoiceSearchFilters, today: Optional[date] = None) -> list:
    conditions = []

    term = (filters.search_term or "").strip()
    if term:
        candidates = search_reference_candidates(term)
        if candidates:
            conditions.append(AcumaticaInvoice.reference_number.in_(candidates))
        else:
            pattern = f"%{_escape_like(term)}%"
            conditions.append(
                or_(
                    AcumaticaInvoice.reference_number.ilike(pattern, escape="\\"),
                    AcumaticaInvoice.customer_name.ilike(pattern, escape="\\"),
                )
            )

    if filters.status:
        conditions.append(AcumaticaInvoice.status == filters.status)
    if filters.customer:
        conditions.append(AcumaticaInvoice.customer == filters.customer)
    if filters.customer_ids:
        conditions.append(AcumaticaInvoice.customer.in_(filters.customer_ids))

    if filters.balance == "paid":
        conditions.append(AcumaticaInvoice.balance <= 0)
    elif filters.balance == "unpaid":
        conditions.append(AcumaticaInvoice.balance > 0)

    if filters.color == "none":
        conditions.append(AcumaticaInvoice.color_status.is_(None))
    elif filters.color:
        conditions.append(AcumaticaInvoice.color_status == filters.color)

    if filters.date_from:
        conditions.append(AcumaticaInvoice.date >= filters.date_from)
    if filters.date_to:
        conditions.append(AcumaticaInvoice.date <= filters.date_to)

    if filters.broken_promises_only:
        conditions.append(broken_promise_clause(today or datetime.utcnow().date()))

    return conditions


def build_order_by(sort_by: str, sort_order: str) -> list:
    column = SORT_COLUMNS.get(sort_by, AcumaticaInvoice.date)
    descending = (sort_order or "desc").lower() != "asc"

    order = []
    if sort_by == "color":
        # Colored invoices first regardless of direction
        order.append(case((AcumaticaInvoice.color_status.is_(None), 1), else_=0))
    order.append(column.desc().nulls_last() if descending else column.asc().nulls_last())
    if sort_by != "date":
        order.append(AcumaticaInvoice.date.desc().nulls_last())
    order.append(AcumaticaInvoice.reference_number.desc())
    return order


def clamp_page(limit: Optional[int], offset: Optional[int]) -> tuple[int, int]:
    limit = MAX_PAGE_SIZE if not limit or limit < 1 else min(limit, MAX_PAGE_SIZE)
    offset = max(0, offset or 0)
    return limit, offset


async def search_invoices_paginated(
    session: AsyncSession, filters: InvoiceSearchFilters
) -> list[AcumaticaInvoice]:
    limit, offset = clamp_page(filters.limit, filters.offset)
    q = (
        select(AcumaticaInvoice)
        .where(*build_search_conditions(filters))
        .order_by(*build_order_by(filters.sort_by, filters.sort_order))
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(q)
    return list(result.scalars().all())


async def count_invoices(session: AsyncSession, filters: InvoiceSearchFilters) -> int:
    q = select(func.count(AcumaticaInvoice.id)).where(*build_search_conditions(filters))
    return (await session.execute(q)).scalar() or 0


async def global_search(session: AsyncSession, term: str, limit: int = 10) -> dict:
    """Quick lookup across customers, invoices and payments."""
    term = (term or "").strip()
    if not term:
        return {"customers": [], "invoices": [], "payments": []}

    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    pattern = f"%{_escape_like(term)}%"

    customers = await session.execute(
        select(AcumaticaCustomer)
        .where(
            or_(
                AcumaticaCustomer.customer_id.ilike(pattern, escape="\\"),
                AcumaticaCustomer.customer_name.ilike(pattern, escape="\\"),
            )
        )
        .order_by(AcumaticaCustomer.customer_name)
        .limit(limit)
    )

    invoices = await search_invoices_paginated(
        session, InvoiceSearchFilters(search_term=term, limit=limit)
    )

    payments = await session.execute(
        select(AcumaticaPayment)
        .where(
            or_(
                AcumaticaPayment.reference_number.ilike(pattern, escape="\\"),
                AcumaticaPayment.customer_id.ilike(pattern, escape="\\"),
            )
        )
        .order_by(AcumaticaPayment.application_date.desc().nulls_last())
        .limit(limit)
    )

    return {
        "customers": list(customers.scalars().all()),
        "invoices": invoices,
        "payments": list(payments.scalars().all()),
    }
