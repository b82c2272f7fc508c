"""
Unit tests for ar_api/services/sync_service.py

Mappers and change classification are pure; the sync loop runs against an
AsyncMock session and a fake Acumatica client.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from ar_api.services import sync_service as svc
from ar_api.services.normalization import InvalidReferenceNumber
from ar_api.services.sync_service import (
    classify_invoice_change,
    log_sync_change,
    map_application,
    map_customer,
    map_invoice,
    map_payment,
    normalize_document_reference,
    parse_date,
    parse_datetime,
    run_incremental_sync,
    to_decimal,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _wrap(**fields):
    return {k: {"value": v} for k, v in fields.items()}


def _mock_session() -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()

    @asynccontextmanager
    async def _nested():
        yield

    session.begin_nested = MagicMock(side_effect=lambda: _nested())
    return session


def _status_row(**overrides):
    values = dict(
        entity_type="invoice",
        status="idle",
        lookback_minutes=2,
        errors=[],
        last_error=None,
        records_created=0,
        records_updated=0,
        records_synced=0,
        last_successful_sync=None,
        last_sync_started_at=None,
        last_sync_completed_at=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class _FakeClient:
    def __init__(self, invoices=None, error=None):
        self.invoices = invoices or []
        self.error = error
        self.since = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def fetch_invoices(self, since):
        self.since = since
        if self.error:
            raise self.error
        return self.invoices


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def test_parse_datetime_converts_to_naive_utc():
    assert parse_datetime("2026-01-02T10:00:00-05:00") == datetime(2026, 1, 2, 15, 0)
    assert parse_datetime("2026-01-02T10:00:00Z") == datetime(2026, 1, 2, 10, 0)
    assert parse_datetime(None) is None


def test_parse_date_takes_calendar_day():
    assert parse_date("2026-03-04T00:00:00-05:00") == date(2026, 3, 4)
    assert parse_date("") is None


def test_to_decimal_defaults():
    assert to_decimal("12.50") == Decimal("12.50")
    assert to_decimal(None) == Decimal("0")
    assert to_decimal("abc", default=None) is None


# ---------------------------------------------------------------------------
# Mappers
# ---------------------------------------------------------------------------


def test_map_invoice_normalizes_reference():
    record = _wrap(
        ReferenceNbr="1234",
        Type="Invoice",
        Status="Open",
        Date="2026-01-15T00:00:00",
        DueDate="2026-02-14T00:00:00",
        Customer="C001",
        CustomerName="Acme",
        Amount=100,
        Balance="40.5",
    )
    values = map_invoice(record)
    assert values["reference_number"] == "001234"
    assert values["date"] == date(2026, 1, 15)
    assert values["balance"] == Decimal("40.5")
    assert values["raw_data"] is record


def test_map_invoice_rejects_non_numeric_reference():
    with pytest.raises(InvalidReferenceNumber):
        map_invoice(_wrap(ReferenceNbr="AR-55"))


def test_map_customer_falls_back_to_main_contact_email():
    record = _wrap(CustomerID=" C001 ", CustomerName="Acme", Status="Active")
    record["MainContact"] = {"Email": {"value": "ap@acme.test"}}
    values = map_customer(record)
    assert values["customer_id"] == "C001"
    assert values["general_email"] == "ap@acme.test"


def test_map_customer_requires_id():
    with pytest.raises(ValueError):
        map_customer(_wrap(CustomerName="No id"))


def test_map_payment_uses_payment_date_fallback():
    record = _wrap(ReferenceNbr="77", Type="Payment", PaymentAmount=50)
    record["PaymentDate"] = {"value": "2026-01-10T00:00:00"}
    values = map_payment(record)
    assert values["reference_number"] == "000077"
    assert values["application_date"] == datetime(2026, 1, 10)
    assert values["payment_amount"] == Decimal("50")


def test_map_payment_requires_reference_and_type():
    with pytest.raises(ValueError):
        map_payment(_wrap(ReferenceNbr="77"))


def test_map_application_defaults_doc_type():
    values = map_application(_wrap(DisplayRefNbr="5", AmountPaid="10"))
    assert values["invoice_reference_number"] == "000005"
    assert values["doc_type"] == "Invoice"
    assert values["amount_paid"] == Decimal("10")


def test_document_reference_keeps_alphanumeric():
    assert normalize_document_reference("PMT-0001") == "PMT-0001"
    assert normalize_document_reference("12") == "000012"


# ---------------------------------------------------------------------------
# Change classification and logging
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "old, new, is_new, expected",
    [
        (None, "Open", True, "created"),
        ("Open", "Closed", False, "closed"),
        ("Closed", "Open", False, "reopened"),
        ("Balanced", "Open", False, "status_changed"),
        ("Open", "Open", False, "updated"),
    ],
)
def test_classify_invoice_change(old, new, is_new, expected):
    assert classify_invoice_change(old, new, is_new)[0] == expected


async def test_log_sync_change_validates_enums():
    session = _mock_session()
    with pytest.raises(ValueError):
        await log_sync_change(session, sync_type="vendor", action_type="created")
    with pytest.raises(ValueError):
        await log_sync_change(session, sync_type="invoice", action_type="exploded")
    with pytest.raises(ValueError):
        await log_sync_change(
            session, sync_type="invoice", action_type="created", sync_source="cron"
        )
    session.add.assert_not_called()


async def test_log_sync_change_adds_row():
    session = _mock_session()
    entry = await log_sync_change(
        session,
        sync_type="invoice",
        action_type="paid",
        entity_id=uuid.uuid4(),
        entity_reference="001234",
    )
    assert entry.sync_source == "scheduled_sync"
    session.add.assert_called_once_with(entry)


# ---------------------------------------------------------------------------
# Sync loop
# ---------------------------------------------------------------------------


async def test_bad_record_is_skipped_and_recorded():
    session = _mock_session()
    row = _status_row()
    client = _FakeClient(
        invoices=[_wrap(ReferenceNbr="1"), _wrap(ReferenceNbr="BAD"), _wrap(ReferenceNbr="2")]
    )
    upsert = AsyncMock(side_effect=["created", "updated"])

    with patch.object(svc, "get_or_create_sync_status", AsyncMock(return_value=row)), \
            patch.object(svc, "upsert_invoice", upsert):
        result = await svc.sync_invoices(
            session, client, lookback_minutes=10, now=datetime(2026, 1, 1, 12, 0)
        )

    assert result["status"] == "completed"
    assert result["fetched"] == 3
    assert result["created"] == 1
    assert result["updated"] == 1
    assert len(result["errors"]) == 1
    assert client.since == datetime(2026, 1, 1, 11, 50)
    assert row.status == "completed"
    assert row.records_synced == 2
    assert row.last_error == result["errors"][0]


async def test_fetch_failure_marks_status_failed():
    session = _mock_session()
    row = _status_row()
    client = _FakeClient(error=RuntimeError("boom"))

    with patch.object(svc, "get_or_create_sync_status", AsyncMock(return_value=row)):
        result = await svc.sync_invoices(session, client)

    assert result["status"] == "failed"
    assert row.status == "failed"
    assert row.last_error == "boom"


async def test_run_incremental_sync_rejects_unknown_entity():
    with pytest.raises(ValueError):
        await run_incremental_sync(_mock_session(), entity_types=["vendor"])


async def test_run_incremental_sync_without_credentials_skips():
    with patch.object(svc, "get_active_credentials", AsyncMock(return_value=None)):
        result = await run_incremental_sync(_mock_session())
    assert result == {"status": "skipped", "reason": "no_credentials", "results": {}}


async def test_run_incremental_sync_dispatches_each_entity():
    client = _FakeClient()
    customers = AsyncMock(return_value={"status": "completed"})
    invoices = AsyncMock(return_value={"status": "completed"})
    with patch.dict(svc.ENTITY_SYNCS, {"customer": customers, "invoice": invoices}):
        result = await run_incremental_sync(
            _mock_session(),
            entity_types=["customer", "invoice"],
            sync_source="manual_sync",
            client=client,
        )

    assert result["status"] == "completed"
    assert set(result["results"]) == {"customer", "invoice"}
    assert invoices.await_args.kwargs["sync_source"] == "manual_sync"


async def test_claim_skips_entities_already_running():
    session = _mock_session()
    result = MagicMock()
    result.scalars.return_value.all.return_value = ["payment"]
    session.execute = AsyncMock(return_value=result)

    claimed = await svc.claim_sync_entities(
        session, ["invoice", "payment"], now=datetime(2026, 3, 5, 12, 0)
    )

    assert claimed == ["payment"]
    stmt = session.execute.await_args.args[0]
    sql = str(stmt.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}))
    assert "UPDATE sync_status SET status='running'" in sql
    assert "sync_status.status != 'running'" in sql
    assert "sync_status.last_sync_started_at <" in sql
    assert "11:30:00" in sql
    assert "RETURNING sync_status.entity_type" in sql
