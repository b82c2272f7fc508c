"""
Unit tests for ar_api/services/invoice_status_service.py

Uses AsyncMock to isolate from the database.
Tests: apply_color_status, set_promise_date, is_promise_broken,
       should_clear_red, auto-red UPDATE statements, run_auto_red_status_checks,
       get_invoice_by_reference.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from sqlalchemy.dialects import postgresql

from ar_api.services import invoice_status_service as svc
from ar_api.services.invoice_status_service import (
    AUTO_THRESHOLD_MARKER,
    apply_color_status,
    get_invoice_by_reference,
    is_promise_broken,
    run_auto_red_status_checks,
    set_promise_date,
    should_clear_red,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_invoice(**overrides):
    values = dict(
        id=uuid.uuid4(),
        reference_number="001234",
        status="Open",
        date=date(2026, 1, 1),
        balance=Decimal("100.00"),
        color_status=None,
        promise_date=None,
        promise_by=None,
        last_modified_by_color=None,
        last_touched_date=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _mock_session() -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


def _execute_result(scalar_value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar_value
    return result


# ---------------------------------------------------------------------------
# apply_color_status
# ---------------------------------------------------------------------------


@patch("ar_api.services.invoice_status_service.log_user_activity", new_callable=AsyncMock)
@patch("ar_api.services.invoice_status_service.log_invoice_activity", new_callable=AsyncMock)
async def test_apply_color_status_sets_and_logs(mock_invoice_log, mock_user_log):
    session = _mock_session()
    session.execute.return_value = _execute_result(SimpleNamespace(is_active=True))
    invoice = _make_invoice()
    user_id = uuid.uuid4()

    await apply_color_status(session, invoice, "Green", user_id)

    assert invoice.color_status == "green"
    assert invoice.last_modified_by_color == str(user_id)
    assert isinstance(invoice.last_touched_date, datetime)
    mock_invoice_log.assert_awaited_once()
    assert mock_invoice_log.await_args.kwargs["new_value"] == "green"
    mock_user_log.assert_awaited_once()


@patch("ar_api.services.invoice_status_service.log_user_activity", new_callable=AsyncMock)
@patch("ar_api.services.invoice_status_service.log_invoice_activity", new_callable=AsyncMock)
async def test_apply_color_status_rejects_inactive_option(mock_invoice_log, mock_user_log):
    session = _mock_session()
    session.execute.return_value = _execute_result(SimpleNamespace(is_active=False))
    invoice = _make_invoice()

    with pytest.raises(HTTPException) as exc:
        await apply_color_status(session, invoice, "purple", uuid.uuid4())

    assert exc.value.status_code == 400
    assert invoice.color_status is None
    mock_invoice_log.assert_not_awaited()


@patch("ar_api.services.invoice_status_service.log_user_activity", new_callable=AsyncMock)
@patch("ar_api.services.invoice_status_service.log_invoice_activity", new_callable=AsyncMock)
async def test_apply_color_status_clear(mock_invoice_log, mock_user_log):
    session = _mock_session()
    invoice = _make_invoice(color_status="red")

    await apply_color_status(session, invoice, "none", uuid.uuid4())

    assert invoice.color_status is None
    session.execute.assert_not_awaited()
    assert mock_invoice_log.await_args.kwargs["old_value"] == "red"


@patch("ar_api.services.invoice_status_service.log_user_activity", new_callable=AsyncMock)
@patch("ar_api.services.invoice_status_service.log_invoice_activity", new_callable=AsyncMock)
async def test_apply_same_color_is_noop(mock_invoice_log, mock_user_log):
    session = _mock_session()
    session.execute.return_value = _execute_result(SimpleNamespace(is_active=True))
    invoice = _make_invoice(color_status="yellow")

    await apply_color_status(session, invoice, "yellow", uuid.uuid4())

    mock_invoice_log.assert_not_awaited()
    mock_user_log.assert_not_awaited()


# ---------------------------------------------------------------------------
# set_promise_date
# ---------------------------------------------------------------------------


@patch("ar_api.services.invoice_status_service.log_user_activity", new_callable=AsyncMock)
@patch("ar_api.services.invoice_status_service.log_invoice_activity", new_callable=AsyncMock)
async def test_set_promise_date(mock_invoice_log, mock_user_log):
    session = _mock_session()
    invoice = _make_invoice()
    user_id = uuid.uuid4()

    await set_promise_date(session, invoice, date(2026, 2, 1), user_id)

    assert invoice.promise_date == date(2026, 2, 1)
    assert invoice.promise_by == user_id
    assert mock_invoice_log.await_args.kwargs["activity_type"] == "promise_date_set"


@patch("ar_api.services.invoice_status_service.log_user_activity", new_callable=AsyncMock)
@patch("ar_api.services.invoice_status_service.log_invoice_activity", new_callable=AsyncMock)
async def test_clear_promise_date(mock_invoice_log, mock_user_log):
    session = _mock_session()
    invoice = _make_invoice(promise_date=date(2026, 2, 1), promise_by=uuid.uuid4())

    await set_promise_date(session, invoice, None, uuid.uuid4())

    assert invoice.promise_date is None
    assert invoice.promise_by is None
    assert mock_invoice_log.await_args.kwargs["old_value"] == "2026-02-01"


# ---------------------------------------------------------------------------
# Broken promises
# ---------------------------------------------------------------------------


def test_promise_broken_when_green_past_due_with_balance():
    invoice = _make_invoice(color_status="green", promise_date=date(2026, 3, 1))
    assert is_promise_broken(invoice, now=datetime(2026, 3, 2, 8, 0))


def test_promise_not_broken_on_promise_day():
    invoice = _make_invoice(color_status="green", promise_date=date(2026, 3, 1))
    assert not is_promise_broken(invoice, now=datetime(2026, 3, 1, 23, 59))


def test_promise_not_broken_when_paid():
    invoice = _make_invoice(
        color_status="green", promise_date=date(2026, 3, 1), balance=Decimal("0")
    )
    assert not is_promise_broken(invoice, now=datetime(2026, 4, 1))


def test_promise_not_broken_when_not_green():
    invoice = _make_invoice(color_status="yellow", promise_date=date(2026, 3, 1))
    assert not is_promise_broken(invoice, now=datetime(2026, 4, 1))


# ---------------------------------------------------------------------------
# Red escalation helpers
# ---------------------------------------------------------------------------


def test_should_clear_red_when_paid_off():
    assert should_clear_red(Decimal("50"), Decimal("0"), "red")


def test_should_not_clear_other_colors_or_partial_payments():
    assert not should_clear_red(Decimal("50"), Decimal("0"), "green")
    assert not should_clear_red(Decimal("50"), Decimal("10"), "red")
    assert not should_clear_red(Decimal("0"), Decimal("0"), "red")


def _compiled(stmt) -> str:
    sql = stmt.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True})
    return " ".join(str(sql).split())


async def test_auto_red_update_conditions():
    session = _mock_session()
    result = MagicMock()
    result.scalars.return_value.all.return_value = []
    session.execute.return_value = result

    await svc.auto_update_invoice_red_status(session, today=date(2026, 5, 1))

    sql = _compiled(session.execute.await_args.args[0])
    where = sql.split(" WHERE ", 1)[1]
    assert "acumatica_invoices.status = 'Open'" in where
    assert "acumatica_invoices.balance > 0" in where
    assert "acumatica_invoices.color_status IS NULL OR acumatica_invoices.color_status != 'red'" in where
    assert ">= coalesce((SELECT acumatica_customers.days_from_invoice_threshold" in where
    assert "30)" in where


async def test_auto_red_requires_customer_row():
    session = _mock_session()
    result = MagicMock()
    result.scalars.return_value.all.return_value = []
    session.execute.return_value = result

    await svc.auto_update_invoice_red_status(session, today=date(2026, 5, 1))
    await svc.auto_red_untouched(session, today=date(2026, 5, 1))

    for call in session.execute.await_args_list:
        where = _compiled(call.args[0]).split(" WHERE ", 1)[1]
        assert (
            "EXISTS (SELECT * FROM acumatica_customers "
            "WHERE acumatica_customers.customer_id = acumatica_invoices.customer)"
        ) in where



async def test_run_auto_red_status_checks_summary():
    session = _mock_session()
    with patch.object(
        svc, "auto_update_invoice_red_status", AsyncMock(return_value=(2, ["000001", "000002"]))
    ), patch.object(svc, "auto_red_untouched", AsyncMock(return_value=(1, ["000003"]))):
        summary = await run_auto_red_status_checks(session, today=date(2026, 5, 1))

    assert summary["run_date"] == "2026-05-01"
    assert summary["total_updated"] == 3
    assert summary["threshold"]["reference_numbers"] == ["000001", "000002"]


async def test_auto_update_returns_marked_refs():
    session = _mock_session()
    result = MagicMock()
    result.scalars.return_value.all.return_value = ["000009", "000002"]
    session.execute.return_value = result

    count, refs = await svc.auto_update_invoice_red_status(session, today=date(2026, 5, 1))

    assert count == 2
    assert refs == ["000002", "000009"]
    stmt = session.execute.await_args.args[0]
    params = stmt.compile(dialect=postgresql.dialect()).params
    assert params["last_modified_by_color"] == AUTO_THRESHOLD_MARKER


# ---------------------------------------------------------------------------
# get_invoice_by_reference
# ---------------------------------------------------------------------------


async def test_get_invoice_by_reference_invalid():
    session = _mock_session()
    with pytest.raises(HTTPException) as exc:
        await get_invoice_by_reference(session, "ABC")
    assert exc.value.status_code == 400
    session.execute.assert_not_awaited()


async def test_get_invoice_by_reference_missing():
    session = _mock_session()
    session.execute.return_value = _execute_result(None)
    with pytest.raises(HTTPException) as exc:
        await get_invoice_by_reference(session, "1234")
    assert exc.value.status_code == 404


async def test_get_invoice_by_reference_found():
    session = _mock_session()
    invoice = _make_invoice()
    session.execute.return_value = _execute_result(invoice)
    assert await get_invoice_by_reference(session, "1234") is invoice
