import uuid
from datetime import date as date_type
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.middleware.auth import get_current_user
from ar_api.middleware.authorization import require_roles, COLLECTION_ROLES, READ_ROLES
from ar_api.middleware.rls import get_db_with_user
from ar_api.models.invoice import (
    AcumaticaInvoice,
    InvoiceActivityLog,
    InvoiceColorStatusOption,
    InvoiceMemo,
    InvoiceMemoAttachment,
)
from ar_api.schemas.common import OffsetPaginatedResponse, build_offset_pagination, iso
from ar_api.schemas.invoice import (
    ColorStatusOptionResponse,
    ColorStatusUpdate,
    InvoiceActivityResponse,
    InvoiceResponse,
    MemoAttachmentResponse,
    MemoCreate,
    MemoResponse,
    PromiseDateUpdate,
)
from ar_api.services.activity_service import log_user_activity
from ar_api.services.invoice_status_service import (
    apply_color_status,
    get_invoice_by_reference,
    is_promise_broken,
    list_broken_promises,
    set_promise_date,
)
from ar_api.services.search_service import (
    InvoiceSearchFilters,
    MAX_PAGE_SIZE,
    clamp_page,
    count_invoices,
    search_invoices_paginated,
)
from ar_api.services.storage import attachment_key, memo_storage, validate_attachment

logger = structlog.get_logger()
router = APIRouter()


def invoice_to_response(inv: AcumaticaInvoice) -> InvoiceResponse:
    return InvoiceResponse(
        id=str(inv.id),
        reference_number=inv.reference_number,
        type=inv.type,
        status=inv.status,
        date=iso(inv.date),
        due_date=iso(inv.due_date),
        customer=inv.customer,
        customer_name=inv.customer_name,
        customer_order=inv.customer_order,
        description=inv.description,
        terms=inv.terms,
        amount=float(inv.amount or 0),
        balance=float(inv.balance or 0),
        color_status=inv.color_status,
        last_modified_by_color=inv.last_modified_by_color,
        promise_date=iso(inv.promise_date),
        promise_by=str(inv.promise_by) if inv.promise_by else None,
        promise_broken=is_promise_broken(inv),
        last_touched_date=iso(inv.last_touched_date),
        synced_at=iso(inv.synced_at),
    )


def _attachment_to_response(att: InvoiceMemoAttachment) -> MemoAttachmentResponse:
    try:
        url = memo_storage.get_presigned_url(att.file_path)
    except Exception as e:
        logger.warning("memo_attachment_url_failed", key=att.file_path, error=str(e))
        url = None
    return MemoAttachmentResponse(
        id=str(att.id),
        file_name=att.file_name,
        file_type=att.file_type,
        file_size=att.file_size,
        url=url,
        created_at=iso(att.created_at) or "",
    )


def _memo_to_response(memo: InvoiceMemo, attachments: List[InvoiceMemoAttachment]) -> MemoResponse:
    return MemoResponse(
        id=str(memo.id),
        invoice_id=str(memo.invoice_id),
        invoice_reference=memo.invoice_reference,
        user_id=str(memo.user_id),
        memo_text=memo.memo_text,
        attachments=[_attachment_to_response(a) for a in attachments],
        created_at=iso(memo.created_at) or "",
        updated_at=iso(memo.updated_at) or "",
    )


@router.get("", response_model=OffsetPaginatedResponse[InvoiceResponse])
async def search_invoices(
    search: Optional[str] = Query(None, max_length=200),
    status_filter: Optional[str] = Query(None, alias="status"),
    customer: Optional[str] = Query(None),
    customer_ids: Optional[List[str]] = Query(None),
    balance: str = Query("all", pattern="^(all|paid|unpaid)$"),
    color: Optional[str] = Query(None),
    date_from: Optional[date_type] = Query(None),
    date_to: Optional[date_type] = Query(None),
    broken_promises_only: bool = Query(False),
    sort_by: str = Query("date"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    limit: int = Query(MAX_PAGE_SIZE, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*READ_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    filters = InvoiceSearchFilters(
        search_term=search,
        status=status_filter,
        customer=customer,
        customer_ids=customer_ids or [],
        balance=balance,
        color=color,
        date_from=date_from,
        date_to=date_to,
        broken_promises_only=broken_promises_only,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )
    limit, offset = clamp_page(limit, offset)
    total = await count_invoices(db, filters)
    invoices = await search_invoices_paginated(db, filters)
    return OffsetPaginatedResponse(
        data=[invoice_to_response(i) for i in invoices],
        pagination=build_offset_pagination(limit, offset, total),
    )


@router.get("/broken-promises", response_model=List[InvoiceResponse])
async def broken_promises(
    customer: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*READ_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    invoices = await list_broken_promises(db, customer=customer, limit=limit)
    return [invoice_to_response(i) for i in invoices]


@router.get("/color-options", response_model=List[ColorStatusOptionResponse])
async def color_options(
    include_inactive: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_with_user),
):
    q = select(InvoiceColorStatusOption)
    if not include_inactive:
        q = q.where(InvoiceColorStatusOption.is_active.is_(True))
    result = await db.execute(q.order_by(InvoiceColorStatusOption.sort_order))
    return [
        ColorStatusOptionResponse(
            id=str(o.id),
            status_name=o.status_name,
            display_name=o.display_name,
            color_class=o.color_class,
            sort_order=o.sort_order,
            is_active=o.is_active,
            is_system=o.is_system,
        )
        for o in result.scalars().all()
    ]


@router.get("/{reference_number}", response_model=InvoiceResponse)
async def get_invoice(
    reference_number: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*READ_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    invoice = await get_invoice_by_reference(db, reference_number)
    await log_user_activity(
        db,
        user_id=current_user["user_id"],
        action_type="invoice_viewed",
        entity_type="invoice",
        entity_id=invoice.reference_number,
    )
    return invoice_to_response(invoice)


@router.patch("/{reference_number}/color-status", response_model=InvoiceResponse)
async def update_color_status(
    reference_number: str,
    body: ColorStatusUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    invoice = await get_invoice_by_reference(db, reference_number, for_update=True)
    await apply_color_status(db, invoice, body.color_status, current_user["user_id"])
    return invoice_to_response(invoice)


@router.patch("/{reference_number}/promise-date", response_model=InvoiceResponse)
async def update_promise_date(
    reference_number: str,
    body: PromiseDateUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    invoice = await get_invoice_by_reference(db, reference_number, for_update=True)
    await set_promise_date(db, invoice, body.promise_date, current_user["user_id"])
    if body.color_status is not None:
        await apply_color_status(db, invoice, body.color_status, current_user["user_id"])
    return invoice_to_response(invoice)


@router.get("/{reference_number}/activity", response_model=List[InvoiceActivityResponse])
async def invoice_activity(
    reference_number: str,
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*READ_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    invoice = await get_invoice_by_reference(db, reference_number)
    result = await db.execute(
        select(InvoiceActivityLog)
        .where(InvoiceActivityLog.invoice_id == invoice.id)
        .order_by(InvoiceActivityLog.created_at.desc())
        .limit(limit)
    )
    return [
        InvoiceActivityResponse(
            id=str(a.id),
            activity_type=a.activity_type,
            description=a.description,
            old_value=a.old_value,
            new_value=a.new_value,
            user_id=str(a.user_id) if a.user_id else None,
            created_at=iso(a.created_at) or "",
        )
        for a in result.scalars().all()
    ]


# ---------------------------------------------------------------------------
# Memos
# ---------------------------------------------------------------------------


async def _memo_attachments(db: AsyncSession, memo_ids: list) -> dict:
    if not memo_ids:
        return {}
    result = await db.execute(
        select(InvoiceMemoAttachment)
        .where(InvoiceMemoAttachment.memo_id.in_(memo_ids))
        .order_by(InvoiceMemoAttachment.created_at)
    )
    grouped: dict = {}
    for att in result.scalars().all():
        grouped.setdefault(att.memo_id, []).append(att)
    return grouped


@router.get("/{reference_number}/memos", response_model=List[MemoResponse])
async def list_memos(
    reference_number: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*READ_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    invoice = await get_invoice_by_reference(db, reference_number)
    result = await db.execute(
        select(InvoiceMemo)
        .where(InvoiceMemo.invoice_id == invoice.id)
        .order_by(InvoiceMemo.created_at.desc())
    )
    memos = list(result.scalars().all())
    attachments = await _memo_attachments(db, [m.id for m in memos])
    return [_memo_to_response(m, attachments.get(m.id, [])) for m in memos]


@router.post(
    "/{reference_number}/memos",
    response_model=MemoResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_memo(
    reference_number: str,
    body: MemoCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    invoice = await get_invoice_by_reference(db, reference_number)
    memo = InvoiceMemo(
        invoice_id=invoice.id,
        invoice_reference=invoice.reference_number,
        user_id=current_user["user_id"],
        memo_text=body.memo_text,
    )
    db.add(memo)
    await db.flush()
    await db.refresh(memo)

    await log_user_activity(
        db,
        user_id=current_user["user_id"],
        action_type="memo_created",
        entity_type="invoice",
        entity_id=invoice.reference_number,
        details={"memo_id": str(memo.id)},
    )
    return _memo_to_response(memo, [])


@router.post(
    "/{reference_number}/memos/{memo_id}/attachments",
    response_model=MemoAttachmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_memo_attachment(
    reference_number: str,
    memo_id: uuid.UUID,
    file: UploadFile = File(...),
    file_name: Optional[str] = Form(None),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    """Attach an image or voice note to a memo. Returns the stored attachment."""
    invoice = await get_invoice_by_reference(db, reference_number)
    memo = await db.get(InvoiceMemo, memo_id)
    if not memo or memo.invoice_id != invoice.id:
        raise HTTPException(status_code=404, detail="Memo not found")

    file_bytes = await file.read()
    validate_attachment(file.content_type, len(file_bytes))

    key = attachment_key(invoice.id, file.content_type, file.filename)
    try:
        memo_storage.upload(file_bytes, key, content_type=file.content_type)
    except Exception as e:
        logger.error("memo_attachment_upload_failed", error=str(e), key=key)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to upload file to storage",
        )

    attachment = InvoiceMemoAttachment(
        memo_id=memo.id,
        file_name=file_name or file.filename or key.rsplit("/", 1)[-1],
        file_path=key,
        file_type=file.content_type,
        file_size=len(file_bytes),
    )
    db.add(attachment)
    await db.flush()
    await db.refresh(attachment)
    return _attachment_to_response(attachment)


@router.delete(
    "/{reference_number}/memos/{memo_id}/attachments/{attachment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_memo_attachment(
    reference_number: str,
    memo_id: uuid.UUID,
    attachment_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    invoice = await get_invoice_by_reference(db, reference_number)
    memo = await db.get(InvoiceMemo, memo_id)
    attachment = await db.get(InvoiceMemoAttachment, attachment_id)
    if (
        not memo
        or memo.invoice_id != invoice.id
        or not attachment
        or attachment.memo_id != memo.id
    ):
        raise HTTPException(status_code=404, detail="Attachment not found")
    if str(memo.user_id) != str(current_user["user_id"]) and current_user["role"] != "admin":
        raise HTTPException(status_code=403, detail="Only the memo author can remove attachments")

    try:
        memo_storage.delete(attachment.file_path)
    except Exception as e:
        logger.error("memo_attachment_delete_failed", error=str(e), key=attachment.file_path)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to delete file from storage",
        )
    await db.delete(attachment)
    await db.flush()
