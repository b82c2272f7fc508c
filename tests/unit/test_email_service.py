"""
Unit tests for ar_api/services/email_service.py

The shared httpx client is swapped for one backed by httpx.MockTransport.
"""

from unittest.mock import patch

import httpx
import pytest

from ar_api.config import settings
from ar_api.services import email_service
from ar_api.services.email_service import build_payload, send_email


@pytest.fixture
def api_key():
    with patch.object(settings, "SENDGRID_API_KEY", "test-key"):
        yield


def _use_transport(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return patch.object(email_service, "get_http_client", return_value=client)


def test_build_payload_disables_tracking():
    payload = build_payload(["a@x.test"], "Hello", "<p>Hi</p>", "ar@x.test", "AR Team")
    assert payload["from"] == {"email": "ar@x.test", "name": "AR Team"}
    assert payload["personalizations"][0]["to"] == [{"email": "a@x.test"}]
    assert payload["tracking_settings"]["open_tracking"] == {"enable": False}


async def test_missing_api_key_skips_send():
    with patch.object(settings, "SENDGRID_API_KEY", None):
        result = await send_email(["a@x.test"], "s", "b")
    assert not result.success
    assert "not configured" in result.error


async def test_no_recipients(api_key):
    result = await send_email([], "s", "b")
    assert not result.success


async def test_accepted_returns_message_id(api_key):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer test-key"
        return httpx.Response(202, headers={"X-Message-Id": "msg-1"})

    with _use_transport(handler):
        result = await send_email(["a@x.test"], "Statement", "<p>Due</p>")

    assert result.success
    assert result.message_id == "msg-1"


async def test_client_error_is_not_retried(api_key):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(400, text="invalid from address")

    with _use_transport(handler):
        result = await send_email(["a@x.test"], "s", "b")

    assert not result.success
    assert result.error == "invalid from address"
    assert len(calls) == 1
