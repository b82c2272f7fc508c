"""
Unit tests for ar_api/services/email_scheduler.py

Slot arithmetic is pure; process_email_schedule runs against an AsyncMock
session with send_email patched.
"""

import uuid
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ar_api.services import email_scheduler as svc
from ar_api.services.email_scheduler import (
    build_dedup_key,
    is_time_to_send,
    parse_send_time,
    process_email_schedule,
    render_template,
    resolve_timezone,
    skip_reason,
    target_day_of_month,
)
from ar_api.services.email_service import EmailResult

# 09:00 in New York on 2026-03-05 (EST, UTC-5)
NOW = datetime(2026, 3, 5, 14, 0, tzinfo=timezone.utc)


def _customer(**overrides):
    values = dict(
        id=uuid.uuid4(),
        name="Acme",
        email="ap@acme.test",
        is_active=True,
        responded_this_month=False,
        postpone_until=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _assignment(**overrides):
    values = dict(id=uuid.uuid4(), start_day_of_month=5, timezone="America/New_York")
    values.update(overrides)
    return SimpleNamespace(**values)


def _formula(schedule=None):
    return SimpleNamespace(
        id=uuid.uuid4(), schedule=schedule or [{"day": 1, "times": ["09:00:00"]}]
    )


def _template():
    return SimpleNamespace(
        id=uuid.uuid4(),
        subject="{month} statement for {customer_name}",
        body="<p>Hello {customer_name}</p>",
    )


# ---------------------------------------------------------------------------
# Slot arithmetic
# ---------------------------------------------------------------------------


def test_parse_send_time():
    assert parse_send_time("09:30:00") == (9, 30)
    assert parse_send_time("14") == (14, 0)
    with pytest.raises(ValueError):
        parse_send_time("25:00")


def test_target_day_clamps_to_month_end():
    assert target_day_of_month(5, 1, 2026, 3) == 5
    assert target_day_of_month(28, 5, 2026, 2) == 28
    assert target_day_of_month(30, 3, 2026, 4) == 30


def test_time_to_send_inside_window():
    assert is_time_to_send(5, 1, "09:00:00", "America/New_York", NOW)
    assert is_time_to_send(5, 1, "09:02", "America/New_York", NOW)
    assert not is_time_to_send(5, 1, "09:03", "America/New_York", NOW)


def test_time_to_send_wrong_day():
    assert not is_time_to_send(6, 1, "09:00", "America/New_York", NOW)


def test_time_to_send_uses_assignment_timezone():
    assert is_time_to_send(5, 1, "14:00", "UTC", NOW)
    assert not is_time_to_send(5, 1, "14:00", "America/New_York", NOW)


def test_invalid_timezone_falls_back():
    assert str(resolve_timezone("Mars/Olympus")) == "America/New_York"


def test_dedup_key_format():
    assignment_id = uuid.UUID("00000000-0000-0000-0000-000000000001")
    key = build_dedup_key(assignment_id, date(2026, 3, 5), 1, "9:05:00")
    assert key == "00000000-0000-0000-0000-000000000001:2026-03-05:1:0905"


def test_render_template():
    assert render_template("{month} for {customer_name}", "Acme", "March") == "March for Acme"


# ---------------------------------------------------------------------------
# skip_reason
# ---------------------------------------------------------------------------


def test_skip_reasons():
    formula, template = _formula(), _template()
    assert skip_reason(None, formula, template, NOW) == "Customer not found"
    assert skip_reason(_customer(is_active=False), formula, template, NOW) == "Customer is inactive"
    assert (
        skip_reason(_customer(postpone_until=datetime(2026, 3, 10)), formula, template, NOW)
        == "Customer postponed"
    )
    assert (
        skip_reason(_customer(responded_this_month=True), formula, template, NOW)
        == "Customer responded this month"
    )
    assert skip_reason(_customer(), None, template, NOW) == "Formula not found"
    assert skip_reason(_customer(), formula, None, NOW) == "Template not found"
    assert skip_reason(_customer(postpone_until=datetime(2026, 3, 1)), formula, template, NOW) is None


# ---------------------------------------------------------------------------
# process_email_schedule
# ---------------------------------------------------------------------------


async def test_due_slot_is_claimed_and_sent():
    session = AsyncMock()
    session.flush = AsyncMock()
    log_row = SimpleNamespace(status="pending", sent_at=None, provider_message_id=None)
    session.get.return_value = log_row
    rows = [(_assignment(), _customer(), _formula(), _template())]
    send_mock = AsyncMock(return_value=EmailResult(success=True, message_id="m-1"))

    with patch.object(svc, "_load_assignments", AsyncMock(return_value=rows)), \
            patch.object(svc, "claim_slot", AsyncMock(return_value=uuid.uuid4())) as claim_mock, \
            patch.object(svc, "send_email", send_mock):
        summary = await process_email_schedule(session, now=NOW)

    assert summary["sent"] == 1
    assert log_row.status == "sent"
    assert log_row.provider_message_id == "m-1"
    assert claim_mock.await_args.args[5] == "March statement for Acme"
    assert send_mock.await_args.args[0] == ["ap@acme.test"]


async def test_claimed_slot_is_not_resent():
    session = AsyncMock()
    rows = [(_assignment(), _customer(), _formula(), _template())]
    send_mock = AsyncMock()

    with patch.object(svc, "_load_assignments", AsyncMock(return_value=rows)), \
            patch.object(svc, "claim_slot", AsyncMock(return_value=None)), \
            patch.object(svc, "send_email", send_mock):
        summary = await process_email_schedule(session, now=NOW)

    assert summary["skipped"] == 1
    assert summary["results"][0]["reason"] == "Slot already claimed"
    send_mock.assert_not_awaited()


async def test_failed_send_is_recorded():
    session = AsyncMock()
    session.flush = AsyncMock()
    log_row = SimpleNamespace(status="pending", error_message=None)
    session.get.return_value = log_row
    rows = [(_assignment(), _customer(), _formula(), _template())]

    with patch.object(svc, "_load_assignments", AsyncMock(return_value=rows)), \
            patch.object(svc, "claim_slot", AsyncMock(return_value=uuid.uuid4())), \
            patch.object(svc, "send_email", AsyncMock(return_value=EmailResult(False, error="bounced"))):
        summary = await process_email_schedule(session, now=NOW)

    assert summary["failed"] == 1
    assert log_row.status == "failed"
    assert log_row.error_message == "bounced"


async def test_not_due_does_nothing():
    session = AsyncMock()
    rows = [(_assignment(start_day_of_month=20), _customer(), _formula(), _template())]
    claim_mock = AsyncMock()

    with patch.object(svc, "_load_assignments", AsyncMock(return_value=rows)), \
            patch.object(svc, "claim_slot", claim_mock):
        summary = await process_email_schedule(session, now=NOW)

    assert summary == {"sent": 0, "failed": 0, "skipped": 0, "results": []}
    claim_mock.assert_not_awaited()
