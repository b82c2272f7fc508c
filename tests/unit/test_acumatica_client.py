"""
Unit tests for ar_api/services/acumatica_client.py

HTTP is served by httpx.MockTransport; nothing leaves the process.
"""

import json
from datetime import datetime

import httpx
import pytest

from ar_api.services.acumatica_client import (
    INVOICE_FIELD_MAP,
    AcumaticaClient,
    AcumaticaError,
    format_filter_timestamp,
    normalize_base_url,
    unwrap_fields,
)


def _client(handler, **kwargs) -> AcumaticaClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AcumaticaClient(
        base_url="erp.example.com/",
        username="sync",
        password="secret",
        company="Acme",
        http_client=http,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_unwrap_fields_flattens_value_wrappers():
    record = {
        "ReferenceNbr": {"value": "001234"},
        "Balance": {"value": 12.5},
        "Customer": {},
        "Unmapped": {"value": "x"},
        "id": "abc",
    }
    assert unwrap_fields(record, INVOICE_FIELD_MAP) == {
        "reference_number": "001234",
        "balance": 12.5,
    }


def test_normalize_base_url():
    assert normalize_base_url("erp.example.com/") == "https://erp.example.com"
    assert normalize_base_url("http://localhost:8080") == "http://localhost:8080"
    assert normalize_base_url("") == ""


def test_filter_timestamp_drops_microseconds():
    assert format_filter_timestamp(datetime(2026, 1, 2, 3, 4, 5, 999)) == "2026-01-02T03:04:05"


# ---------------------------------------------------------------------------
# Session and fetches
# ---------------------------------------------------------------------------


async def test_login_fetch_logout_cycle():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        if request.url.path == "/entity/auth/login":
            body = json.loads(request.content)
            assert body == {"name": "sync", "password": "secret", "company": "Acme"}
            return httpx.Response(204)
        if request.url.path == "/entity/auth/logout":
            return httpx.Response(204)
        assert request.url.params["$filter"] == (
            "LastModifiedDateTime gt datetimeoffset'2026-01-01T00:00:00'"
        )
        return httpx.Response(200, json=[{"ReferenceNbr": {"value": "1"}}])

    async with _client(handler, api_version="24.200.001") as client:
        records = await client.fetch_invoices(datetime(2026, 1, 1))

    assert records == [{"ReferenceNbr": {"value": "1"}}]
    assert calls == [
        ("POST", "/entity/auth/login"),
        ("GET", "/entity/Default/24.200.001/Invoice"),
        ("POST", "/entity/auth/logout"),
    ]


async def test_login_failure_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="bad credentials")

    client = _client(handler)
    with pytest.raises(AcumaticaError):
        await client.login()


async def test_client_error_is_not_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request.url.path)
        return httpx.Response(400, text="bad filter")

    client = _client(handler)
    with pytest.raises(AcumaticaError):
        await client.fetch_customers(datetime(2026, 1, 1))
    assert len(attempts) == 1


async def test_payments_exclude_credit_memos():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["$filter"].endswith("and Type ne 'Credit Memo'")
        return httpx.Response(200, json=[])

    client = _client(handler)
    assert await client.fetch_payments(datetime(2026, 1, 1)) == []


async def test_payment_applications_unwraps_history():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["$expand"] == "ApplicationHistory"
        return httpx.Response(
            200,
            json=[{"ApplicationHistory": [{"DisplayRefNbr": {"value": "001234"}}]}],
        )

    client = _client(handler)
    history = await client.fetch_payment_applications("PMT01", "Payment")
    assert history == [{"DisplayRefNbr": {"value": "001234"}}]
