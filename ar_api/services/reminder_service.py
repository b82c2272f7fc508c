"""Invoice reminders: user-scheduled follow-ups that turn into notifications."""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.models.invoice import AcumaticaInvoice
from ar_api.models.reminder import InvoiceReminder, UserReminderNotification
from ar_api.models.user import UserProfile
from ar_api.services.activity_service import log_user_activity
from ar_api.services.email_service import send_email

logger = structlog.get_logger()


async def create_reminder(
    session: AsyncSession,
    invoice: AcumaticaInvoice,
    user_id: Any,
    reminder_date: datetime,
    reminder_message: Optional[str] = None,
    send_email: bool = False,
) -> InvoiceReminder:
    if reminder_date.tzinfo is not None:
        reminder_date = reminder_date.astimezone(timezone.utc).replace(tzinfo=None)

    reminder = InvoiceReminder(
        invoice_id=invoice.id,
        invoice_reference_number=invoice.reference_number,
        user_id=user_id,
        reminder_date=reminder_date,
        reminder_message=reminder_message,
        send_email=send_email,
        is_triggered=False,
    )
    session.add(reminder)
    await session.flush()

    await log_user_activity(
        session,
        user_id=user_id,
        action_type="reminder_created",
        entity_type="invoice",
        entity_id=invoice.reference_number,
        details={"reminder_date": reminder_date.isoformat(), "send_email": send_email},
    )
    return reminder


async def delete_reminder(session: AsyncSession, reminder_id: Any, user_id: Any) -> None:
    reminder = await session.get(InvoiceReminder, reminder_id)
    if not reminder or str(reminder.user_id) != str(user_id):
        raise HTTPException(status_code=404, detail="Reminder not found")
    await session.delete(reminder)
    await session.flush()


def reminder_message_for(reference_number: str, message: Optional[str]) -> str:
    return f"Reminder for Invoice {reference_number}: {message or ''}".rstrip(": ").rstrip()


async def check_invoice_reminders(
    session: AsyncSession, now: Optional[datetime] = None
) -> dict:
    """
    Fire every untriggered reminder whose date has passed.

    Each fired reminder becomes a user_reminder_notifications row and is
    marked triggered; reminders flagged send_email also email their owner.
    """
    now = now or datetime.utcnow()
    result = await session.execute(
        select(InvoiceReminder, AcumaticaInvoice, UserProfile)
        .join(AcumaticaInvoice, AcumaticaInvoice.id == InvoiceReminder.invoice_id)
        .outerjoin(UserProfile, UserProfile.id == InvoiceReminder.user_id)
        .where(
            InvoiceReminder.is_triggered.is_(False),
            InvoiceReminder.reminder_date <= now,
        )
        .order_by(InvoiceReminder.reminder_date)
        .with_for_update(of=InvoiceReminder, skip_locked=True)
    )
    due = list(result.all())
    if not due:
        return {"triggered": 0, "emails_sent": 0, "email_failures": 0, "reminders": []}

    fired = []
    for reminder, invoice, owner in due:
        message = reminder_message_for(invoice.reference_number, reminder.reminder_message)
        session.add(
            UserReminderNotification(
                user_id=reminder.user_id,
                reminder_id=reminder.id,
                invoice_id=invoice.id,
                title=f"Invoice {invoice.reference_number} reminder",
                message=message,
                is_read=False,
                created_at=now,
            )
        )
        fired.append(
            {
                "id": str(reminder.id),
                "invoice": invoice.reference_number,
                "user_id": str(reminder.user_id),
                "message": reminder.reminder_message,
            }
        )

    # Reminders are marked triggered before any email is sent
    await session.execute(
        update(InvoiceReminder)
        .where(InvoiceReminder.id.in_([r.id for r, _, _ in due]))
        .values(is_triggered=True, triggered_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.flush()

    emails_sent = email_failures = 0
    for reminder, invoice, owner in due:
        if not (reminder.send_email and owner is not None and owner.email):
            continue
        message = reminder_message_for(invoice.reference_number, reminder.reminder_message)
        outcome = await send_email(
            [owner.email],
            f"Reminder: invoice {invoice.reference_number}",
            f"<p>{message}</p><p>Customer: {invoice.customer_name or invoice.customer}</p>",
        )
        if outcome.success:
            emails_sent += 1
        else:
            email_failures += 1

    logger.info(
        "invoice_reminders_triggered",
        triggered=len(fired),
        emails_sent=emails_sent,
        email_failures=email_failures,
    )
    return {
        "triggered": len(fired),
        "emails_sent": emails_sent,
        "email_failures": email_failures,
        "reminders": fired,
    }


async def list_notifications(
    session: AsyncSession, user_id: Any, unread_only: bool = False, limit: int = 50
) -> list[UserReminderNotification]:
    q = select(UserReminderNotification).where(UserReminderNotification.user_id == user_id)
    if unread_only:
        q = q.where(UserReminderNotification.is_read.is_(False))
    result = await session.execute(
        q.order_by(UserReminderNotification.created_at.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def mark_notification_read(
    session: AsyncSession, notification_id: Any, user_id: Any
) -> UserReminderNotification:
    notification = await session.get(UserReminderNotification, notification_id)
    if not notification or str(notification.user_id) != str(user_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.utcnow()
        await session.flush()
    return notification
