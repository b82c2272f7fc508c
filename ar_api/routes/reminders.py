import uuid
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ar_api.middleware.auth import get_current_user
from ar_api.middleware.authorization import require_roles, COLLECTION_ROLES
from ar_api.middleware.rls import get_db_with_user
from ar_api.models.reminder import InvoiceReminder, UserReminderNotification
from ar_api.services.invoice_status_service import get_invoice_by_reference
from ar_api.schemas.common import iso
from ar_api.schemas.reminder import NotificationResponse, ReminderCreate, ReminderResponse
from ar_api.services import reminder_service

router = APIRouter()


def _to_response(r: InvoiceReminder) -> ReminderResponse:
    return ReminderResponse(
        id=str(r.id),
        invoice_id=str(r.invoice_id),
        invoice_reference_number=r.invoice_reference_number,
        user_id=str(r.user_id),
        reminder_date=iso(r.reminder_date) or "",
        reminder_message=r.reminder_message,
        send_email=r.send_email,
        is_triggered=r.is_triggered,
        triggered_at=iso(r.triggered_at),
        created_at=iso(r.created_at) or "",
    )


def _notification_to_response(n: UserReminderNotification) -> NotificationResponse:
    return NotificationResponse(
        id=str(n.id),
        reminder_id=str(n.reminder_id) if n.reminder_id else None,
        invoice_id=str(n.invoice_id) if n.invoice_id else None,
        title=n.title,
        message=n.message,
        is_read=n.is_read,
        read_at=iso(n.read_at),
        created_at=iso(n.created_at) or "",
    )


@router.get("", response_model=List[ReminderResponse])
async def list_reminders(
    include_triggered: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_with_user),
):
    q = select(InvoiceReminder).where(InvoiceReminder.user_id == current_user["user_id"])
    if not include_triggered:
        q = q.where(InvoiceReminder.is_triggered.is_(False))
    result = await db.execute(q.order_by(InvoiceReminder.reminder_date))
    return [_to_response(r) for r in result.scalars().all()]


@router.post("", response_model=ReminderResponse, status_code=status.HTTP_201_CREATED)
async def create_reminder(
    body: ReminderCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*COLLECTION_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    invoice = await get_invoice_by_reference(db, body.invoice_reference_number)
    reminder = await reminder_service.create_reminder(
        db,
        invoice,
        current_user["user_id"],
        body.reminder_date,
        reminder_message=body.reminder_message,
        send_email=body.send_email,
    )
    return _to_response(reminder)


@router.delete("/{reminder_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_reminder(
    reminder_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_with_user),
):
    await reminder_service.delete_reminder(db, reminder_id, current_user["user_id"])


@router.get("/notifications", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_with_user),
):
    notifications = await reminder_service.list_notifications(
        db, current_user["user_id"], unread_only=unread_only, limit=limit
    )
    return [_notification_to_response(n) for n in notifications]


@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_with_user),
):
    notification = await reminder_service.mark_notification_read(
        db, notification_id, current_user["user_id"]
    )
    return _notification_to_response(notification)
