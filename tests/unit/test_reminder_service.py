"""
Unit tests for ar_api/services/reminder_service.py

Tests:
- create_reminder normalizes to naive UTC and logs user activity
- check_invoice_reminders fires notifications, emails owners and marks rows triggered
- delete/mark-read ownership checks
"""

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from ar_api.models.reminder import UserReminderNotification
from ar_api.services import reminder_service
from ar_api.services.email_service import EmailResult
from ar_api.services.reminder_service import (
    check_invoice_reminders,
    create_reminder,
    delete_reminder,
    mark_notification_read,
    reminder_message_for,
)

NOW = datetime(2026, 3, 5, 12, 0)


def _mock_session():
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


def _invoice(ref="001234"):
    return SimpleNamespace(
        id=uuid.uuid4(), reference_number=ref, customer_name="Acme", customer="C001"
    )


def _reminder(user_id, send_email=False, message="Call AP"):
    return SimpleNamespace(
        id=uuid.uuid4(), user_id=user_id, reminder_message=message, send_email=send_email
    )


def _rows_result(rows):
    result = MagicMock()
    result.all.return_value = rows
    return result


def test_reminder_message_without_text():
    assert reminder_message_for("001234", None) == "Reminder for Invoice 001234"
    assert reminder_message_for("001234", "Call") == "Reminder for Invoice 001234: Call"


async def test_create_reminder_converts_to_utc():
    session = _mock_session()
    user_id = uuid.uuid4()
    local = datetime(2026, 3, 5, 9, 0, tzinfo=timezone(timedelta(hours=-5)))

    with patch.object(reminder_service, "log_user_activity", AsyncMock()) as log_mock:
        reminder = await create_reminder(session, _invoice(), user_id, local, "Call", True)

    assert reminder.reminder_date == datetime(2026, 3, 5, 14, 0)
    assert reminder.invoice_reference_number == "001234"
    assert reminder.send_email is True
    assert log_mock.await_args.kwargs["action_type"] == "reminder_created"


async def test_nothing_due():
    session = _mock_session()
    session.execute.return_value = _rows_result([])

    summary = await check_invoice_reminders(session, now=NOW)

    assert summary["triggered"] == 0
    session.add.assert_not_called()


async def test_due_reminders_create_notifications_and_email():
    session = _mock_session()
    user_id = uuid.uuid4()
    owner = SimpleNamespace(email="collector@x.test")
    rows = [
        (_reminder(user_id, send_email=True), _invoice("001"), owner),
        (_reminder(user_id), _invoice("002"), owner),
    ]
    session.execute.side_effect = [_rows_result(rows), MagicMock()]
    send_mock = AsyncMock(return_value=EmailResult(success=True, message_id="m"))

    with patch.object(reminder_service, "send_email", send_mock):
        summary = await check_invoice_reminders(session, now=NOW)

    assert summary["triggered"] == 2
    assert summary["emails_sent"] == 1
    send_mock.assert_awaited_once()
    assert send_mock.await_args.args[0] == ["collector@x.test"]

    notifications = [c.args[0] for c in session.add.call_args_list]
    assert all(isinstance(n, UserReminderNotification) for n in notifications)
    assert notifications[0].message == "Reminder for Invoice 001: Call AP"
    # Second execute marks the batch triggered
    assert session.execute.await_count == 2


async def test_email_failure_is_counted():
    session = _mock_session()
    rows = [(_reminder(uuid.uuid4(), send_email=True), _invoice(), SimpleNamespace(email="a@x.test"))]
    session.execute.side_effect = [_rows_result(rows), MagicMock()]

    with patch.object(
        reminder_service, "send_email", AsyncMock(return_value=EmailResult(False, error="x"))
    ):
        summary = await check_invoice_reminders(session, now=NOW)

    assert summary["triggered"] == 1
    assert summary["email_failures"] == 1


async def test_delete_other_users_reminder_is_404():
    session = _mock_session()
    session.get.return_value = SimpleNamespace(user_id=uuid.uuid4())

    with pytest.raises(HTTPException) as exc:
        await delete_reminder(session, uuid.uuid4(), uuid.uuid4())

    assert exc.value.status_code == 404
    session.delete.assert_not_awaited()


async def test_mark_notification_read():
    session = _mock_session()
    user_id = uuid.uuid4()
    notification = SimpleNamespace(user_id=user_id, is_read=False, read_at=None)
    session.get.return_value = notification

    result = await mark_notification_read(session, uuid.uuid4(), user_id)

    assert result.is_read is True
    assert result.read_at is not None


async def test_reminders_marked_triggered_before_email():
    session = _mock_session()
    order = []
    rows = [(_reminder(uuid.uuid4(), send_email=True), _invoice(), SimpleNamespace(email="a@x.test"))]

    async def _execute(stmt):
        order.append(stmt.__visit_name__)
        return _rows_result(rows) if stmt.__visit_name__ == "select" else MagicMock()

    async def _send(*args, **kwargs):
        order.append("send_email")
        return EmailResult(success=True, message_id="m")

    session.execute.side_effect = _execute
    session.flush.side_effect = lambda: order.append("flush")

    with patch.object(reminder_service, "send_email", AsyncMock(side_effect=_send)):
        await check_invoice_reminders(session, now=NOW)

    assert order == ["select", "update", "flush", "send_email"]
