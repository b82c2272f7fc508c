"""
Unit tests for ar_api/services/auto_ticket_rules_service.py
"""

import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ar_api.services import auto_ticket_rules_service as svc
from ar_api.services.auto_ticket_rules_service import (
    AUTO_TICKET_TYPE,
    apply_rule,
    payment_recency_matches,
    process_auto_ticket_rules,
    resolve_rule_invoices,
)

TODAY = date(2026, 6, 1)


def _make_rule(**overrides):
    values = dict(
        id=uuid.uuid4(),
        customer_id="C001",
        condition_logic="invoice_only",
        min_days_old=30,
        max_days_old=None,
        check_payment_within_days_min=None,
        check_payment_within_days_max=None,
        assigned_collector_id=uuid.uuid4(),
        created_by=uuid.uuid4(),
        active=True,
        last_run_at=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _mock_session() -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()

    @asynccontextmanager
    async def _nested():
        yield

    session.begin_nested = MagicMock(side_effect=lambda: _nested())
    return session


# ---------------------------------------------------------------------------
# payment_recency_matches
# ---------------------------------------------------------------------------


def test_recency_inside_window():
    assert payment_recency_matches(date(2026, 5, 1), TODAY, 30, 60)


def test_recency_outside_window():
    assert not payment_recency_matches(date(2026, 5, 25), TODAY, 30, 60)
    assert not payment_recency_matches(date(2026, 1, 1), TODAY, 30, 60)


def test_recency_accepts_datetimes():
    assert payment_recency_matches(datetime(2026, 5, 1, 17, 30), TODAY, 31, 31)


def test_never_paid_matches_open_ended_window():
    assert payment_recency_matches(None, TODAY, 90, None)
    assert not payment_recency_matches(None, TODAY, 0, 365)


# ---------------------------------------------------------------------------
# resolve_rule_invoices
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "logic, payment_match, expected",
    [
        ("invoice_only", False, ["000001", "000002"]),
        ("invoice_only", True, ["000001", "000002"]),
        ("payment_only", True, ["000002", "000003"]),
        ("payment_only", False, []),
        ("both_and", True, ["000001", "000002"]),
        ("both_and", False, []),
        ("both_or", True, ["000001", "000002", "000003"]),
        ("both_or", False, ["000001", "000002"]),
    ],
)
def test_resolve_rule_invoices(logic, payment_match, expected):
    age_refs = ["000001", "000002"]
    open_refs = ["000002", "000003"]
    assert resolve_rule_invoices(logic, age_refs, open_refs, payment_match) == expected


def test_resolve_unknown_logic():
    with pytest.raises(ValueError):
        resolve_rule_invoices("sometimes", [], [], False)


# ---------------------------------------------------------------------------
# apply_rule
# ---------------------------------------------------------------------------


async def test_apply_rule_without_matches_only_stamps_run():
    session = _mock_session()
    rule = _make_rule()
    with patch.object(svc, "_age_refs", AsyncMock(return_value=[])), \
            patch.object(svc, "create_ticket", AsyncMock()) as create_mock:
        outcome = await apply_rule(session, rule, TODAY)

    assert outcome == {"created": False, "updated": False, "added": 0}
    assert rule.last_run_at is not None
    create_mock.assert_not_awaited()


async def test_apply_rule_creates_ticket():
    session = _mock_session()
    rule = _make_rule()
    with patch.object(svc, "_age_refs", AsyncMock(return_value=["000001", "000002"])), \
            patch.object(svc, "_find_open_ticket", AsyncMock(return_value=None)), \
            patch.object(svc, "create_ticket", AsyncMock()) as create_mock:
        outcome = await apply_rule(session, rule, TODAY)

    assert outcome == {"created": True, "updated": False, "added": 2}
    kwargs = create_mock.await_args.kwargs
    assert kwargs["assigned_collector_id"] == rule.assigned_collector_id
    assert kwargs["ticket_type"] == AUTO_TICKET_TYPE
    assert kwargs["invoice_reference_numbers"] == ["000001", "000002"]


async def test_apply_rule_extends_open_ticket():
    session = _mock_session()
    rule = _make_rule()
    ticket = SimpleNamespace(id=uuid.uuid4())
    with patch.object(svc, "_age_refs", AsyncMock(return_value=["000001", "000002"])), \
            patch.object(svc, "_find_open_ticket", AsyncMock(return_value=ticket)), \
            patch.object(svc, "ticket_invoice_refs", AsyncMock(return_value=["000001"])), \
            patch.object(svc, "add_invoices_to_ticket", AsyncMock(return_value=["000002"])) as add_mock:
        outcome = await apply_rule(session, rule, TODAY)

    assert outcome == {"created": False, "updated": True, "added": 1}
    assert add_mock.await_args.args[2] == ["000002"]


async def test_apply_payment_only_rule_skips_age_query():
    session = _mock_session()
    rule = _make_rule(
        condition_logic="payment_only",
        check_payment_within_days_min=60,
        check_payment_within_days_max=None,
    )
    age_mock = AsyncMock()
    with patch.object(svc, "_last_payment_date", AsyncMock(return_value=datetime(2026, 1, 1))), \
            patch.object(svc, "_age_refs", age_mock), \
            patch.object(svc, "_open_refs", AsyncMock(return_value=["000009"])), \
            patch.object(svc, "_find_open_ticket", AsyncMock(return_value=None)), \
            patch.object(svc, "create_ticket", AsyncMock()):
        outcome = await apply_rule(session, rule, TODAY)

    age_mock.assert_not_awaited()
    assert outcome["created"] is True


# ---------------------------------------------------------------------------
# process_auto_ticket_rules
# ---------------------------------------------------------------------------


async def test_failing_rule_does_not_stop_others():
    session = _mock_session()
    good, bad = _make_rule(), _make_rule(customer_id="C002")
    result = MagicMock()
    result.scalars.return_value.all.return_value = [bad, good]
    session.execute.return_value = result

    apply_mock = AsyncMock(
        side_effect=[RuntimeError("boom"), {"created": True, "updated": False, "added": 3}]
    )
    with patch.object(svc, "apply_rule", apply_mock):
        summary = await process_auto_ticket_rules(session, today=TODAY)

    assert summary["processed"] == 1
    assert summary["tickets_created"] == 1
    assert summary["invoices_added"] == 3
    assert len(summary["errors"]) == 1
    assert "C002" in summary["errors"][0]


class _ExpiringRule(SimpleNamespace):
    """Raises on attribute access once expired, like an ORM row after rollback."""

    def __getattribute__(self, name):
        if name != "__dict__" and object.__getattribute__(self, "__dict__").get("_expired"):
            raise RuntimeError(f"expired attribute {name} loaded outside a greenlet")
        return object.__getattribute__(self, name)


async def test_failed_rule_is_reported_after_savepoint_expiry():
    session = _mock_session()
    bad = _ExpiringRule(**vars(_make_rule(customer_id="C002")))
    good = _make_rule()
    result = MagicMock()
    result.scalars.return_value.all.return_value = [bad, good]
    session.execute.return_value = result

    @asynccontextmanager
    async def _rolling_back():
        try:
            yield
        except Exception:
            bad.__dict__["_expired"] = True
            raise

    session.begin_nested = MagicMock(side_effect=lambda: _rolling_back())
    apply_mock = AsyncMock(
        side_effect=[RuntimeError("boom"), {"created": False, "updated": True, "added": 1}]
    )
    with patch.object(svc, "apply_rule", apply_mock):
        summary = await process_auto_ticket_rules(session, today=TODAY)

    assert apply_mock.await_count == 2
    assert apply_mock.await_args_list[1].args[1] is good
    assert summary["processed"] == 1
    assert summary["tickets_updated"] == 1
    assert summary["errors"] == [f"Rule {bad.__dict__['id']} (C002): boom"]
