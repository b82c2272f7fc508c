"""
Collection ticket service.

Tickets group a customer's invoices for one collector. Every mutation writes
ticket_activity_log and user_activity_logs. All functions use the caller's
session (no commit). get_db() auto-commits.
"""

import re
from datetime import datetime, date
from typing import Any, Optional, Iterable
import uuid

from fastapi import HTTPException
from sqlalchemy import select, func, delete, update, and_
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.models.customer import AcumaticaCustomer
from ar_api.models.invoice import AcumaticaInvoice
from ar_api.models.ticket import (
    CollectionTicket,
    TicketInvoice,
    InvoiceAssignment,
    TicketMergeEvent,
    TicketNote,
    TicketStatusOption,
    TICKET_PRIORITIES,
)
from ar_api.models.user import UserProfile
from ar_api.services.activity_service import log_ticket_activity, log_user_activity
from ar_api.services.normalization import normalize_many

logger = structlog.get_logger()

TICKET_PREFIX = "TKT"
CLOSED_STATUS = "closed"
_TICKET_NUMBER_RE = re.compile(r"^TKT(\d+)$")


def format_ticket_number(sequence: int) -> str:
    return f"{TICKET_PREFIX}{sequence:06d}"


def parse_ticket_number(ticket_number: Optional[str]) -> int:
    match = _TICKET_NUMBER_RE.match(ticket_number or "")
    return int(match.group(1)) if match else 0


async def next_ticket_number(session: AsyncSession) -> str:
    """Highest existing TKT sequence + 1."""
    result = await session.execute(
        select(CollectionTicket.ticket_number).where(
            CollectionTicket.ticket_number.op("~")(r"^TKT[0-9]+$")
        )
    )
    highest = max((parse_ticket_number(n) for n in result.scalars().all()), default=0)
    return format_ticket_number(highest + 1)


async def get_ticket(session: AsyncSession, ticket_id: Any, for_update: bool = False) -> CollectionTicket:
    q = select(CollectionTicket).where(CollectionTicket.id == ticket_id)
    if for_update:
        q = q.with_for_update()
    ticket = (await session.execute(q)).scalar_one_or_none()
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket


async def _validate_status(session: AsyncSession, status_name: str) -> None:
    result = await session.execute(
        select(TicketStatusOption).where(TicketStatusOption.status_name == status_name)
    )
    option = result.scalar_one_or_none()
    if not option or not option.is_active:
        raise HTTPException(
            status_code=400, detail=f"Unknown or inactive ticket status '{status_name}'"
        )


def _validate_priority(priority: str) -> None:
    if priority not in TICKET_PRIORITIES:
        raise HTTPException(
            status_code=400,
            detail=f"Priority must be one of: {', '.join(TICKET_PRIORITIES)}",
        )


async def _resolve_customer_name(session: AsyncSession, customer_id: str) -> str:
    result = await session.execute(
        select(AcumaticaCustomer.customer_name).where(
            AcumaticaCustomer.customer_id == customer_id
        )
    )
    return result.scalar_one_or_none() or customer_id


async def ticket_invoice_refs(session: AsyncSession, ticket_id: Any) -> list[str]:
    result = await session.execute(
        select(TicketInvoice.invoice_reference_number)
        .where(TicketInvoice.ticket_id == ticket_id)
        .order_by(TicketInvoice.invoice_reference_number)
    )
    return list(result.scalars().all())


async def list_ticket_invoices(session: AsyncSession, ticket_id: Any) -> list[AcumaticaInvoice]:
    result = await session.execute(
        select(AcumaticaInvoice)
        .join(
            TicketInvoice,
            TicketInvoice.invoice_reference_number == AcumaticaInvoice.reference_number,
        )
        .where(TicketInvoice.ticket_id == ticket_id)
        .order_by(AcumaticaInvoice.date.asc().nulls_last())
    )
    return list(result.scalars().all())


async def create_ticket(
    session: AsyncSession,
    customer_id: str,
    created_by: Any,
    assigned_collector_id: Any = None,
    invoice_reference_numbers: Optional[Iterable[str]] = None,
    priority: str = "medium",
    ticket_type: Optional[str] = None,
    notes: Optional[str] = None,
    status: str = "open",
    customer_name: Optional[str] = None,
) -> CollectionTicket:
    _validate_priority(priority)
    await _validate_status(session, status)

    now = datetime.utcnow()
    ticket = CollectionTicket(
        id=uuid.uuid4(),
        ticket_number=await next_ticket_number(session),
        customer_id=customer_id,
        customer_name=customer_name or await _resolve_customer_name(session, customer_id),
        assigned_collector_id=assigned_collector_id,
        assigned_at=now if assigned_collector_id else None,
        assigned_by=created_by if assigned_collector_id else None,
        status=status,
        priority=priority,
        ticket_type=ticket_type,
        notes=notes,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    session.add(ticket)
    await session.flush()

    await log_ticket_activity(
        session,
        ticket_id=ticket.id,
        activity_type="ticket_created",
        description=f"Ticket {ticket.ticket_number} created for {ticket.customer_name}",
        created_by=created_by,
        new_value=status,
        metadata={"priority": priority, "ticket_type": ticket_type},
    )
    await log_user_activity(
        session,
        user_id=created_by,
        action_type="ticket_created",
        entity_type="ticket",
        entity_id=ticket.id,
        details={"ticket_number": ticket.ticket_number, "customer_id": customer_id},
    )

    if invoice_reference_numbers:
        await add_invoices_to_ticket(session, ticket, invoice_reference_numbers, created_by)

    logger.info(
        "ticket_created",
        ticket_id=str(ticket.id),
        ticket_number=ticket.ticket_number,
        customer_id=customer_id,
    )
    return ticket


async def _upsert_assignments(
    session: AsyncSession,
    ticket: CollectionTicket,
    refs: list[str],
    user_id: Any,
) -> None:
    if not refs:
        return
    existing = await session.execute(
        select(InvoiceAssignment).where(InvoiceAssignment.invoice_reference_number.in_(refs))
    )
    by_ref = {a.invoice_reference_number: a for a in existing.scalars().all()}
    now = datetime.utcnow()
    for ref in refs:
        assignment = by_ref.get(ref)
        if assignment is None:
            session.add(
                InvoiceAssignment(
                    invoice_reference_number=ref,
                    assigned_collector_id=ticket.assigned_collector_id,
                    ticket_id=ticket.id,
                    assigned_by=user_id,
                    assigned_at=now,
                )
            )
        else:
            assignment.assigned_collector_id = ticket.assigned_collector_id
            assignment.ticket_id = ticket.id
            assignment.assigned_by = user_id
            assignment.assigned_at = now
    await session.flush()


async def add_invoices_to_ticket(
    session: AsyncSession,
    ticket: CollectionTicket,
    reference_numbers: Iterable[str],
    user_id: Any,
    activity_description: Optional[str] = None,
) -> list[str]:
    """Attach invoices to a ticket. Returns the references actually added."""
    refs, rejected = normalize_many(reference_numbers)
    if rejected:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid invoice reference numbers: {', '.join(rejected)}",
        )

    already = set(await ticket_invoice_refs(session, ticket.id))
    new_refs = [r for r in refs if r not in already]
    if not new_refs:
        return []

    now = datetime.utcnow()
    for ref in new_refs:
        session.add(
            TicketInvoice(
                ticket_id=ticket.id,
                invoice_reference_number=ref,
                added_by=user_id,
                added_at=now,
            )
        )
    ticket.updated_at = now
    await session.flush()
    await _upsert_assignments(session, ticket, new_refs, user_id)

    await log_ticket_activity(
        session,
        ticket_id=ticket.id,
        activity_type="invoice_added",
        description=activity_description or f"Added {len(new_refs)} invoice(s)",
        created_by=user_id,
        new_value=", ".join(new_refs),
        metadata={"invoice_count": len(new_refs), "invoice_reference_numbers": new_refs},
    )
    await log_user_activity(
        session,
        user_id=user_id,
        action_type="ticket_invoices_added",
        entity_type="ticket",
        entity_id=ticket.id,
        details={"invoice_reference_numbers": new_refs},
    )
    return new_refs


async def remove_invoice_from_ticket(
    session: AsyncSession,
    ticket: CollectionTicket,
    reference_number: str,
    user_id: Any,
) -> None:
    refs, rejected = normalize_many([reference_number])
    if rejected:
        raise HTTPException(status_code=400, detail="Invalid invoice reference number")
    ref = refs[0]

    result = await session.execute(
        delete(TicketInvoice)
        .where(
            TicketInvoice.ticket_id == ticket.id,
            TicketInvoice.invoice_reference_number == ref,
        )
        .returning(TicketInvoice.id)
    )
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Invoice is not on this ticket")

    await session.execute(
        delete(InvoiceAssignment).where(
            InvoiceAssignment.invoice_reference_number == ref,
            InvoiceAssignment.ticket_id == ticket.id,
        )
    )
    ticket.updated_at = datetime.utcnow()
    await session.flush()

    await log_ticket_activity(
        session,
        ticket_id=ticket.id,
        activity_type="invoice_removed",
        description=f"Removed invoice {ref}",
        created_by=user_id,
        old_value=ref,
    )
    await log_user_activity(
        session,
        user_id=user_id,
        action_type="ticket_invoice_removed",
        entity_type="ticket",
        entity_id=ticket.id,
        details={"invoice_reference_number": ref},
    )


async def assign_ticket(
    session: AsyncSession,
    ticket: CollectionTicket,
    collector_id: Any,
    assigned_by: Any,
) -> CollectionTicket:
    collector = (
        await session.execute(select(UserProfile).where(UserProfile.id == collector_id))
    ).scalar_one_or_none()
    if not collector or not collector.is_active:
        raise HTTPException(status_code=404, detail="Collector not found")

    old_collector = ticket.assigned_collector_id
    now = datetime.utcnow()
    ticket.assigned_collector_id = collector.id
    ticket.assigned_at = now
    ticket.assigned_by = assigned_by
    ticket.updated_at = now

    await session.execute(
        update(InvoiceAssignment)
        .where(InvoiceAssignment.ticket_id == ticket.id)
        .values(assigned_collector_id=collector.id, assigned_by=assigned_by, assigned_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.flush()

    await log_ticket_activity(
        session,
        ticket_id=ticket.id,
        activity_type="ticket_reassigned" if old_collector else "ticket_assigned",
        description=f"Ticket assigned to {collector.full_name or collector.email}",
        created_by=assigned_by,
        old_value=old_collector,
        new_value=collector.id,
    )
    await log_user_activity(
        session,
        user_id=assigned_by,
        action_type="ticket_assigned",
        entity_type="ticket",
        entity_id=ticket.id,
        details={
            "old_collector_id": str(old_collector) if old_collector else None,
            "new_collector_id": str(collector.id),
        },
    )
    return ticket


async def change_ticket_status(
    session: AsyncSession,
    ticket: CollectionTicket,
    new_status: str,
    user_id: Any,
) -> CollectionTicket:
    await _validate_status(session, new_status)

    old_status = ticket.status
    if old_status == new_status:
        return ticket

    now = datetime.utcnow()
    ticket.status = new_status
    ticket.updated_at = now
    if new_status == CLOSED_STATUS:
        ticket.resolved_at = now
        activity_type = "ticket_closed"
    elif old_status == CLOSED_STATUS:
        ticket.resolved_at = None
        activity_type = "ticket_reopened"
    else:
        activity_type = "ticket_status_changed"
    await session.flush()

    await log_ticket_activity(
        session,
        ticket_id=ticket.id,
        activity_type=activity_type,
        description=f"Status changed from {old_status} to {new_status}",
        created_by=user_id,
        old_value=old_status,
        new_value=new_status,
    )
    await log_user_activity(
        session,
        user_id=user_id,
        action_type=activity_type,
        entity_type="ticket",
        entity_id=ticket.id,
        details={"old_status": old_status, "new_status": new_status},
    )
    return ticket


async def change_ticket_priority(
    session: AsyncSession,
    ticket: CollectionTicket,
    priority: str,
    user_id: Any,
) -> CollectionTicket:
    _validate_priority(priority)
    old_priority = ticket.priority
    if old_priority == priority:
        return ticket

    ticket.priority = priority
    ticket.updated_at = datetime.utcnow()
    await session.flush()

    await log_ticket_activity(
        session,
        ticket_id=ticket.id,
        activity_type="ticket_priority_changed",
        description=f"Priority changed from {old_priority} to {priority}",
        created_by=user_id,
        old_value=old_priority,
        new_value=priority,
    )
    await log_user_activity(
        session,
        user_id=user_id,
        action_type="ticket_priority_changed",
        entity_type="ticket",
        entity_id=ticket.id,
        details={"old_priority": old_priority, "new_priority": priority},
    )
    return ticket


async def set_ticket_promise_date(
    session: AsyncSession,
    ticket: CollectionTicket,
    promise_date: Optional[date],
    user_id: Any,
) -> CollectionTicket:
    old_date = ticket.promise_date
    ticket.promise_date = promise_date
    ticket.promise_by = user_id if promise_date else None
    ticket.updated_at = datetime.utcnow()
    await session.flush()

    await log_ticket_activity(
        session,
        ticket_id=ticket.id,
        activity_type="ticket_promise_date_set",
        description=(
            f"Promise date set to {promise_date.isoformat()}"
            if promise_date
            else "Promise date cleared"
        ),
        created_by=user_id,
        old_value=old_date.isoformat() if old_date else None,
        new_value=promise_date.isoformat() if promise_date else None,
    )
    await log_user_activity(
        session,
        user_id=user_id,
        action_type="ticket_promise_date_set",
        entity_type="ticket",
        entity_id=ticket.id,
        details={"promise_date": promise_date.isoformat() if promise_date else None},
    )
    return ticket


async def merge_tickets(
    session: AsyncSession,
    target_ticket_id: Any,
    source_ticket_ids: list[Any],
    user_id: Any,
    notes: Optional[str] = None,
    invoice_reference_numbers: Optional[Iterable[str]] = None,
) -> TicketMergeEvent:
    """
    Fold source tickets (and optionally loose invoices) into a target ticket.

    Source tickets must belong to the same customer; their invoices move to
    the target and they are closed. A ticket_merge_events row records which
    tickets and invoices were combined.
    """
    source_ids = [s for s in dict.fromkeys(source_ticket_ids or []) if str(s) != str(target_ticket_id)]
    if not source_ids and not invoice_reference_numbers:
        raise HTTPException(status_code=400, detail="Nothing to merge")

    target = await get_ticket(session, target_ticket_id, for_update=True)
    if target.status == CLOSED_STATUS:
        raise HTTPException(status_code=409, detail="Cannot merge into a closed ticket")

    sources: list[CollectionTicket] = []
    for source_id in source_ids:
        source = await get_ticket(session, source_id, for_update=True)
        if source.customer_id != target.customer_id:
            raise HTTPException(
                status_code=409,
                detail=f"Ticket {source.ticket_number} belongs to a different customer",
            )
        sources.append(source)

    moved_refs: list[str] = []
    for source in sources:
        moved_refs.extend(await ticket_invoice_refs(session, source.id))
    if invoice_reference_numbers:
        moved_refs.extend(invoice_reference_numbers)

    now = datetime.utcnow()
    for source in sources:
        await session.execute(delete(TicketInvoice).where(TicketInvoice.ticket_id == source.id))
        old_status = source.status
        source.status = CLOSED_STATUS
        source.resolved_at = now
        source.updated_at = now
        await session.flush()
        await log_ticket_activity(
            session,
            ticket_id=source.id,
            activity_type="merged",
            description=f"Merged into {target.ticket_number}",
            created_by=user_id,
            old_value=old_status,
            new_value=CLOSED_STATUS,
            metadata={"target_ticket_id": str(target.id)},
        )

    added = await add_invoices_to_ticket(
        session,
        target,
        moved_refs,
        user_id,
        activity_description=f"Merged {len(set(moved_refs))} invoice(s) into ticket",
    )

    event = TicketMergeEvent(
        target_ticket_id=target.id,
        source_ticket_ids=[s.id for s in sources],
        source_ticket_numbers=[s.ticket_number for s in sources],
        merged_by=user_id,
        merged_at=now,
        invoice_count=len(added),
        invoice_reference_numbers=added,
        notes=notes,
    )
    session.add(event)
    await session.flush()

    await log_ticket_activity(
        session,
        ticket_id=target.id,
        activity_type="merged",
        description=(
            f"Merged {len(sources)} ticket(s) and {len(added)} invoice(s) into this ticket"
        ),
        created_by=user_id,
        metadata={
            "source_ticket_numbers": [s.ticket_number for s in sources],
            "invoice_reference_numbers": added,
        },
    )
    await log_user_activity(
        session,
        user_id=user_id,
        action_type="tickets_merged",
        entity_type="ticket",
        entity_id=target.id,
        details={
            "source_ticket_ids": [str(s.id) for s in sources],
            "invoice_count": len(added),
        },
    )

    logger.info(
        "tickets_merged",
        target_ticket_id=str(target.id),
        sources=len(sources),
        invoices=len(added),
    )
    return event


async def get_ticket_merge_history(session: AsyncSession, ticket_id: Any) -> list[dict]:
    result = await session.execute(
        select(TicketMergeEvent, UserProfile.full_name, UserProfile.email)
        .outerjoin(UserProfile, TicketMergeEvent.merged_by == UserProfile.id)
        .where(TicketMergeEvent.target_ticket_id == ticket_id)
        .order_by(TicketMergeEvent.merged_at.desc())
    )
    history = []
    for event, full_name, email in result.all():
        history.append(
            {
                "merge_id": str(event.id),
                "merged_at": event.merged_at.isoformat() if event.merged_at else None,
                "merged_by_name": full_name,
                "merged_by_email": email,
                "source_ticket_numbers": event.source_ticket_numbers or [],
                "invoice_count": event.invoice_count,
                "invoice_reference_numbers": event.invoice_reference_numbers or [],
                "notes": event.notes,
            }
        )
    return history


async def add_ticket_note(
    session: AsyncSession,
    ticket: CollectionTicket,
    note_text: str,
    user_id: Any,
) -> TicketNote:
    note_text = (note_text or "").strip()
    if not note_text:
        raise HTTPException(status_code=400, detail="Note text is required")

    note = TicketNote(ticket_id=ticket.id, note_text=note_text, created_by=user_id)
    session.add(note)
    ticket.updated_at = datetime.utcnow()
    await session.flush()

    await log_ticket_activity(
        session,
        ticket_id=ticket.id,
        activity_type="note_added",
        description="Note added",
        created_by=user_id,
        new_value=note_text[:500],
    )
    await log_user_activity(
        session,
        user_id=user_id,
        action_type="ticket_note_added",
        entity_type="ticket",
        entity_id=ticket.id,
    )
    return note


async def close_tickets_when_invoices_paid(
    session: AsyncSession, reference_number: str
) -> list[str]:
    """
    Close every open ticket holding this invoice once all of the ticket's
    invoices are closed or paid off. Returns the closed ticket numbers.
    """
    result = await session.execute(
        select(CollectionTicket)
        .join(TicketInvoice, TicketInvoice.ticket_id == CollectionTicket.id)
        .where(
            TicketInvoice.invoice_reference_number == reference_number,
            CollectionTicket.status != CLOSED_STATUS,
        )
    )
    tickets = list(result.scalars().unique().all())

    closed: list[str] = []
    for ticket in tickets:
        outstanding = await session.execute(
            select(func.count(TicketInvoice.id))
            .join(
                AcumaticaInvoice,
                AcumaticaInvoice.reference_number == TicketInvoice.invoice_reference_number,
            )
            .where(
                TicketInvoice.ticket_id == ticket.id,
                and_(AcumaticaInvoice.status != "Closed", AcumaticaInvoice.balance > 0),
            )
        )
        if (outstanding.scalar() or 0) > 0:
            continue

        old_status = ticket.status
        now = datetime.utcnow()
        ticket.status = CLOSED_STATUS
        ticket.resolved_at = now
        ticket.updated_at = now
        await session.flush()
        await log_ticket_activity(
            session,
            ticket_id=ticket.id,
            activity_type="ticket_closed",
            description="Ticket closed automatically: all invoices paid",
            old_value=old_status,
            new_value=CLOSED_STATUS,
            metadata={"trigger_invoice": reference_number},
        )
        closed.append(ticket.ticket_number)

    if closed:
        logger.info("tickets_auto_closed", reference_number=reference_number, tickets=closed)
    return closed
