"""
/internal/webhooks/* authentication and dispatch, with the webhook service patched.
"""

from unittest.mock import AsyncMock, patch

import pytest

from ar_api.config import settings
from ar_api.routes import webhooks
from ar_api.services.webhook_service import WebhookPayloadError

SECRET = "hook-secret"


@pytest.fixture
def webhook_secret():
    with patch.object(settings, "WEBHOOK_SECRET", SECRET):
        yield {"X-Webhook-Secret": SECRET}


async def test_webhook_without_secret_configured_is_503(client):
    with patch.object(settings, "WEBHOOK_SECRET", None), \
            patch.object(settings, "DEBUG", False):
        response = await client.post("/internal/webhooks/sendgrid", json=[])
    assert response.status_code == 503


async def test_wrong_webhook_secret_is_403(client, webhook_secret):
    response = await client.post(
        "/internal/webhooks/acumatica/invoice",
        json={},
        headers={"X-Webhook-Secret": "guess"},
    )
    assert response.status_code == 403


async def test_acumatica_invoice_webhook(client, mock_db, webhook_secret):
    handler = AsyncMock(
        return_value={"entity": "invoice", "reference": "001234", "action": "updated"}
    )
    payload = {"Entity": {"ReferenceNbr": {"value": "1234"}}}
    with patch.object(webhooks, "process_acumatica_webhook", handler):
        response = await client.post(
            "/internal/webhooks/acumatica/invoice", json=payload, headers=webhook_secret
        )

    assert response.status_code == 200
    assert response.json()["reference"] == "001234"
    assert handler.await_args.args == (mock_db, "invoice", payload)


async def test_acumatica_webhook_bad_payload_is_400(client, webhook_secret):
    handler = AsyncMock(side_effect=WebhookPayloadError("Customer missing CustomerID"))
    with patch.object(webhooks, "process_acumatica_webhook", handler):
        response = await client.post(
            "/internal/webhooks/acumatica/customer", json={}, headers=webhook_secret
        )

    assert response.status_code == 400


async def test_sendgrid_accepts_token_query(client, mock_db, webhook_secret):
    handler = AsyncMock(return_value={"received": 1, "updated": 1, "skipped": 0})
    events = [{"event": "open", "sg_message_id": "abc.filter1", "timestamp": 1772712000}]
    with patch.object(webhooks, "process_sendgrid_events", handler):
        response = await client.post(f"/internal/webhooks/sendgrid?token={SECRET}", json=events)

    assert response.status_code == 200
    assert response.json()["updated"] == 1
    assert handler.await_args.args == (mock_db, events)
