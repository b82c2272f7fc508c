"""
Unit tests for ar_api/services/webhook_service.py

Upserts are patched; SendGrid lookups run against an AsyncMock session.
"""

import uuid
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ar_api.services import webhook_service as svc
from ar_api.services.webhook_service import (
    WebhookPayloadError,
    apply_email_event,
    base_message_id,
    extract_entity,
    process_acumatica_webhook,
    process_sendgrid_events,
)


def _wrap(**fields):
    return {k: {"value": v} for k, v in fields.items()}


def _mock_session():
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


def _email_log(**overrides):
    values = dict(
        id=uuid.uuid4(),
        status="sent",
        delivered_at=None,
        opened_at=None,
        open_count=0,
        clicked_at=None,
        click_count=0,
        bounced_at=None,
        bounce_reason=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


# ---------------------------------------------------------------------------
# Acumatica
# ---------------------------------------------------------------------------


def test_extract_entity_shapes():
    record = _wrap(ReferenceNbr="1")
    assert extract_entity({"Entity": record}) is record
    assert extract_entity({"Inserted": [record], "Deleted": []}) is record
    assert extract_entity(record) is record
    with pytest.raises(WebhookPayloadError):
        extract_entity([record])


async def test_invoice_webhook_uses_webhook_source():
    session = _mock_session()
    upsert = AsyncMock(return_value="status_changed")
    record = _wrap(ReferenceNbr="1234", Type="Invoice", Status="Closed", Balance=0)

    with patch.object(svc, "upsert_invoice", upsert):
        result = await process_acumatica_webhook(session, "invoice", {"Entity": record})

    assert result == {"entity": "invoice", "reference": "001234", "action": "status_changed"}
    values, source = upsert.await_args.args[1:]
    assert values["reference_number"] == "001234"
    assert source == "webhook"


async def test_payment_webhook_upserts_application_history():
    session = _mock_session()
    payment_id = uuid.uuid4()
    record = _wrap(ReferenceNbr="77", Type="Payment", CustomerID="C001", PaymentAmount=50)
    record["ApplicationHistory"] = [
        _wrap(ReferenceNbr="1234", AmountPaid=50),
        _wrap(ReferenceNbr="", AmountPaid=1),
    ]
    upsert_payment = AsyncMock(return_value=("created", payment_id))
    upsert_application = AsyncMock()

    with patch.object(svc, "upsert_payment", upsert_payment), \
            patch.object(svc, "upsert_payment_application", upsert_application):
        result = await process_acumatica_webhook(session, "payment", record)

    assert result["reference"] == "000077"
    assert upsert_payment.await_args.args[2] == "webhook"
    upsert_application.assert_awaited_once()
    assert upsert_application.await_args.args[1] == payment_id
    assert upsert_application.await_args.args[4]["invoice_reference_number"] == "001234"


async def test_bad_record_is_payload_error():
    session = _mock_session()
    with pytest.raises(WebhookPayloadError):
        await process_acumatica_webhook(session, "customer", _wrap(CustomerName="No id"))
    with pytest.raises(WebhookPayloadError):
        await process_acumatica_webhook(session, "vendor", {})


# ---------------------------------------------------------------------------
# SendGrid
# ---------------------------------------------------------------------------


def test_base_message_id_strips_filter_suffix():
    assert base_message_id("abc123.filter0001.16.5E.0") == "abc123"
    assert base_message_id("abc123") == "abc123"
    assert base_message_id(None) is None


def test_delivered_only_advances_sent_rows():
    log = _email_log()
    assert apply_email_event(log, {"event": "delivered", "timestamp": 1772712000})
    assert log.status == "delivered"
    assert log.delivered_at == datetime(2026, 3, 5, 12, 0)

    opened = _email_log(status="opened")
    apply_email_event(opened, {"event": "delivered", "timestamp": 1772712000})
    assert opened.status == "opened"


def test_open_and_click_counts():
    log = _email_log()
    apply_email_event(log, {"event": "open", "timestamp": 1772712000})
    apply_email_event(log, {"event": "open", "timestamp": 1772715600})
    apply_email_event(log, {"event": "click", "timestamp": 1772715600})

    assert log.open_count == 2
    assert log.opened_at == datetime(2026, 3, 5, 12, 0)
    assert log.click_count == 1
    assert log.status == "clicked"


def test_bounce_records_reason():
    log = _email_log()
    apply_email_event(log, {"event": "dropped", "reason": "Bounced Address", "timestamp": 1772712000})
    assert log.status == "bounced"
    assert log.bounce_reason == "Bounced Address"


def test_untracked_event_changes_nothing():
    log = _email_log()
    assert not apply_email_event(log, {"event": "processed", "timestamp": 1772712000})
    assert log.status == "sent"


async def test_process_events_matches_by_message_id():
    session = _mock_session()
    log = _email_log()
    found, missing = MagicMock(), MagicMock()
    found.scalar_one_or_none.return_value = log
    missing.scalar_one_or_none.return_value = None
    session.execute.side_effect = [found, missing]

    summary = await process_sendgrid_events(
        session,
        [
            {"event": "delivered", "sg_message_id": "abc.filter1", "timestamp": 1772712000},
            {"event": "open", "sg_message_id": "zzz.filter1", "timestamp": 1772712000},
            {"event": "open"},
        ],
    )

    assert summary == {"received": 3, "updated": 1, "skipped": 2}
    assert log.status == "delivered"
    assert session.execute.await_count == 2


async def test_process_events_requires_list():
    with pytest.raises(WebhookPayloadError):
        await process_sendgrid_events(_mock_session(), {"event": "open"})
