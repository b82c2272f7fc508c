import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.middleware.auth import get_current_user
from ar_api.middleware.authorization import (
    require_roles,
    COLLECTION_ROLES,
    MANAGER_ROLES,
    READ_ROLES,
)
from ar_api.middleware.rls import get_db_with_user
from ar_api.models.ticket import (
    CollectionTicket,
    TicketActivityLog,
    TicketInvoice,
    TicketNote,
    TicketStatusOption,
    TicketTypeOption,
)
from ar_api.schemas.common import PaginatedResponse, build_pagination, iso
from ar_api.schemas.invoice import InvoiceResponse
from ar_api.schemas.ticket import (
    TicketActivityResponse,
    TicketAssign,
    TicketCreate,
    TicketInvoicesAdd,
    TicketMergeEventResponse,
    TicketMergeRequest,
    TicketNoteCreate,
    TicketNoteResponse,
    TicketOptionResponse,
    TicketPriorityUpdate,
    TicketPromiseUpdate,
    TicketResponse,
    TicketStatusUpdate,
)
from ar_api.routes.invoices import invoice_to_response
from ar_api.services import ticket_service

logger = structlog.get_logger()
router = APIRouter()


def _to_response(t: CollectionTicket, refs: Optional[List[str]] = None) -> TicketResponse:
    return TicketResponse(
        id=str(t.id),
        ticket_number=t.ticket_number,
        customer_id=t.customer_id,
        customer_name=t.customer_name,
        assigned_collector_id=str(t.assigned_collector_id) if t.assigned_collector_id else None,
        assigned_at=iso(t.assigned_at),
        assigned_by=str(t.assigned_by) if t.assigned_by else None,
        status=t.status,
        priority=t.priority,
        ticket_type=t.ticket_type,
        promise_date=iso(t.promise_date),
        notes=t.notes,
        created_by=str(t.created_by) if t.created_by else None,
        resolved_at=iso(t.resolved_at),
        invoice_reference_numbers=refs or [],
        created_at=iso(t.created_at) or "",
        updated_at=iso(t.updated_at) or "",
    )


async def _refs_by_ticket(db: AsyncSession, ticket_ids: list) -> dict:
    if not ticket_ids:
        return {}
    result = await db.execute(
        select(TicketInvoice.ticket_id, TicketInvoice.invoice_reference_number)
        .where(TicketInvoice.ticket_id.in_(ticket_ids))
        .order_by(TicketInvoice.invoice_reference_number)
    )
    grouped: dict = {}
    for ticket_id, ref in result.all():
        grouped.setdefault(ticket_id, []).append(ref)
    return grouped


async def _detail(db: AsyncSession, ticket: CollectionTicket) -> TicketResponse:
    refs = await ticket_service.ticket_invoice_refs(db, ticket.id)
    return _to_response(ticket, refs)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


@router.get("/options/statuses", response_model=List[TicketOptionResponse])
async def status_options(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_with_user),
):
    result = await db.execute(
        select(TicketStatusOption)
        .where(TicketStatusOption.is_active.is_(True))
        .order_by(TicketStatusOption.sort_order)
    )
    return [
        TicketOptionResponse(value=o.status_name, label=o.display_name, sort_order=o.sort_order)
        for o in result.scalars().all()
    ]


@router.get("/options/types", response_model=List[TicketOptionResponse])
async def type_options(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_with_user),
):
    result = await db.execute(
        select(TicketTypeOption)
        .where(TicketTypeOption.is_active.is_(True))
        .order_by(TicketTypeOption.sort_order)
    )
    return [
        TicketOptionResponse(value=o.value, label=o.label, sort_order=o.sort_order)
        for o in result.scalars().all()
    ]


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


@router.get("", response_model=PaginatedResponse[TicketResponse])
async def list_tickets(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    customer_id: Optional[str] = Query(None),
    assigned_collector_id: Optional[uuid.UUID] = Query(None),
    mine: bool = Query(False),
    priority: Optional[str] = Query(None),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*READ_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    conditions = []
    if status_filter:
        conditions.append(CollectionTicket.status == status_filter)
    if customer_id:
        conditions.append(CollectionTicket.customer_id == customer_id)
    if priority:
        conditions.append(CollectionTicket.priority == priority)
    if mine:
        conditions.append(CollectionTicket.assigned_collector_id == current_user["user_id"])
    elif assigned_collector_id:
        conditions.append(CollectionTicket.assigned_collector_id == assigned_collector_id)

    total = (
        await db.execute(select(func.count(CollectionTicket.id)).where(*conditions))
    ).scalar() or 0
    result = await db.execute(
        select(CollectionTicket)
        .where(*conditions)
        .order_by(CollectionTicket.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    tickets = list(result.scalars().all())
    refs = await _refs_by_ticket(db, [t.id for t in tickets])
    return PaginatedResponse(
        data=[_to_response(t, refs.get(t.id, [])) for t in tickets],
        pagination=build_pagination(page, limit, total),
    )


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    body: TicketCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    ticket = await ticket_service.create_ticket(
        db,
        customer_id=body.customer_id,
        created_by=current_user["user_id"],
        assigned_collector_id=body.assigned_collector_id,
        invoice_reference_numbers=body.invoice_reference_numbers,
        priority=body.priority,
        ticket_type=body.ticket_type,
        notes=body.notes,
        status=body.status,
        customer_name=body.customer_name,
    )
    return await _detail(db, ticket)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*READ_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    ticket = await ticket_service.get_ticket(db, ticket_id)
    return await _detail(db, ticket)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(
    ticket_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, for_update=True)
    logger.info(
        "ticket_deleted",
        ticket_number=ticket.ticket_number,
        deleted_by=current_user["user_id"],
    )
    await db.delete(ticket)
    await db.flush()


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@router.post("/{ticket_id}/assign", response_model=TicketResponse)
async def assign_ticket(
    ticket_id: uuid.UUID,
    body: TicketAssign,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, for_update=True)
    await ticket_service.assign_ticket(db, ticket, body.collector_id, current_user["user_id"])
    return await _detail(db, ticket)


@router.patch("/{ticket_id}/status", response_model=TicketResponse)
async def update_status(
    ticket_id: uuid.UUID,
    body: TicketStatusUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, for_update=True)
    await ticket_service.change_ticket_status(db, ticket, body.status, current_user["user_id"])
    return await _detail(db, ticket)


@router.patch("/{ticket_id}/priority", response_model=TicketResponse)
async def update_priority(
    ticket_id: uuid.UUID,
    body: TicketPriorityUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, for_update=True)
    await ticket_service.change_ticket_priority(
        db, ticket, body.priority, current_user["user_id"]
    )
    return await _detail(db, ticket)


@router.patch("/{ticket_id}/promise-date", response_model=TicketResponse)
async def update_promise_date(
    ticket_id: uuid.UUID,
    body: TicketPromiseUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, for_update=True)
    await ticket_service.set_ticket_promise_date(
        db, ticket, body.promise_date, current_user["user_id"]
    )
    return await _detail(db, ticket)


# ---------------------------------------------------------------------------
# Invoices on a ticket
# ---------------------------------------------------------------------------


@router.get("/{ticket_id}/invoices", response_model=List[InvoiceResponse])
async def ticket_invoices(
    ticket_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*READ_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    await ticket_service.get_ticket(db, ticket_id)
    invoices = await ticket_service.list_ticket_invoices(db, ticket_id)
    return [invoice_to_response(i) for i in invoices]


@router.post("/{ticket_id}/invoices", response_model=TicketResponse)
async def add_invoices(
    ticket_id: uuid.UUID,
    body: TicketInvoicesAdd,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, for_update=True)
    await ticket_service.add_invoices_to_ticket(
        db, ticket, body.invoice_reference_numbers, current_user["user_id"]
    )
    return await _detail(db, ticket)


@router.delete("/{ticket_id}/invoices/{reference_number}", response_model=TicketResponse)
async def remove_invoice(
    ticket_id: uuid.UUID,
    reference_number: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, for_update=True)
    await ticket_service.remove_invoice_from_ticket(
        db, ticket, reference_number, current_user["user_id"]
    )
    return await _detail(db, ticket)


# ---------------------------------------------------------------------------
# Merge, notes, history
# ---------------------------------------------------------------------------


@router.post("/{ticket_id}/merge", response_model=TicketResponse)
async def merge_tickets(
    ticket_id: uuid.UUID,
    body: TicketMergeRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    try:
        source_ids = [uuid.UUID(s) for s in body.source_ticket_ids]
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid source ticket id")
    await ticket_service.merge_tickets(
        db,
        ticket_id,
        source_ids,
        current_user["user_id"],
        notes=body.notes,
        invoice_reference_numbers=body.invoice_reference_numbers,
    )
    ticket = await ticket_service.get_ticket(db, ticket_id)
    return await _detail(db, ticket)


@router.get("/{ticket_id}/merge-history", response_model=List[TicketMergeEventResponse])
async def merge_history(
    ticket_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*READ_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    await ticket_service.get_ticket(db, ticket_id)
    return await ticket_service.get_ticket_merge_history(db, ticket_id)


@router.get("/{ticket_id}/notes", response_model=List[TicketNoteResponse])
async def list_notes(
    ticket_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*READ_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    result = await db.execute(
        select(TicketNote)
        .where(TicketNote.ticket_id == ticket_id)
        .order_by(TicketNote.created_at.desc())
    )
    return [
        TicketNoteResponse(
            id=str(n.id),
            ticket_id=str(n.ticket_id),
            note_text=n.note_text,
            created_by=str(n.created_by) if n.created_by else None,
            created_at=iso(n.created_at) or "",
        )
        for n in result.scalars().all()
    ]


@router.post(
    "/{ticket_id}/notes",
    response_model=TicketNoteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_note(
    ticket_id: uuid.UUID,
    body: TicketNoteCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    ticket = await ticket_service.get_ticket(db, ticket_id)
    note = await ticket_service.add_ticket_note(db, ticket, body.note_text, current_user["user_id"])
    return TicketNoteResponse(
        id=str(note.id),
        ticket_id=str(note.ticket_id),
        note_text=note.note_text,
        created_by=str(note.created_by) if note.created_by else None,
        created_at=iso(note.created_at) or "",
    )


@router.get("/{ticket_id}/activity", response_model=List[TicketActivityResponse])
async def ticket_activity(
    ticket_id: uuid.UUID,
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*READ_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    result = await db.execute(
        select(TicketActivityLog)
        .where(TicketActivityLog.ticket_id == ticket_id)
        .order_by(TicketActivityLog.created_at.desc())
        .limit(limit)
    )
    return [
        TicketActivityResponse(
            id=str(a.id),
            ticket_id=str(a.ticket_id),
            activity_type=a.activity_type,
            description=a.description,
            old_value=a.old_value,
            new_value=a.new_value,
            metadata=a.extra_metadata,
            created_by=str(a.created_by) if a.created_by else None,
            created_at=iso(a.created_at) or "",
        )
        for a in result.scalars().all()
    ]
