"""
Unit tests for ar_api/services/cron_dispatch.py

The sync endpoint is served by httpx.MockTransport.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx

from ar_api.models.sync import CronJobLog
from ar_api.services import cron_dispatch
from ar_api.services.cron_dispatch import is_sync_due, trigger_acumatica_sync

NOW = datetime(2026, 3, 5, 12, 0)


def _row(entity_type="invoice", **overrides):
    values = dict(
        entity_type=entity_type,
        sync_enabled=True,
        status="idle",
        last_successful_sync=NOW - timedelta(minutes=10),
        sync_interval_minutes=5,
        last_sync_started_at=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _mock_session(rows):
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    rows_result = MagicMock()
    rows_result.scalars.return_value.all.return_value = rows
    session.execute.side_effect = [rows_result]
    return session


def _credentials():
    return SimpleNamespace(service_base_url="https://ar.example.test/", service_token="svc")


def _logged(session):
    return [c.args[0] for c in session.add.call_args_list if isinstance(c.args[0], CronJobLog)]


# ---------------------------------------------------------------------------
# is_sync_due
# ---------------------------------------------------------------------------


def test_due_after_interval():
    assert is_sync_due(_row(), NOW)
    assert not is_sync_due(_row(last_successful_sync=NOW - timedelta(minutes=2)), NOW)


def test_never_synced_is_due():
    assert is_sync_due(_row(last_successful_sync=None), NOW)


def test_disabled_or_running_not_due():
    assert not is_sync_due(_row(sync_enabled=False), NOW)
    assert not is_sync_due(
        _row(status="running", last_sync_started_at=NOW - timedelta(minutes=2)), NOW
    )


def test_stale_running_row_is_due():
    # A run that crashed without resetting its row must not block syncs forever
    assert is_sync_due(
        _row(status="running", last_sync_started_at=NOW - timedelta(hours=2)), NOW
    )
    assert is_sync_due(_row(status="running", last_sync_started_at=None), NOW)



# ---------------------------------------------------------------------------
# trigger_acumatica_sync
# ---------------------------------------------------------------------------


async def test_no_credentials_skips():
    session = _mock_session([])
    with patch.object(cron_dispatch, "get_active_credentials", AsyncMock(return_value=None)):
        result = await trigger_acumatica_sync(session, now=NOW)

    assert result == {"status": "skipped", "reason": "no_credentials"}
    assert _logged(session)[0].status == "skipped"


async def test_nothing_due():
    session = _mock_session(
        [_row(status="running", last_sync_started_at=NOW - timedelta(minutes=1))]
    )
    with patch.object(cron_dispatch, "get_active_credentials", AsyncMock(return_value=_credentials())):
        result = await trigger_acumatica_sync(session, now=NOW)

    assert result["reason"] == "not_due"
    assert session.execute.await_count == 1


async def test_dispatch_posts_due_entities():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = request.read()
        return httpx.Response(200, json={"ok": True})

    session = _mock_session([_row("invoice"), _row("payment", last_successful_sync=NOW)])
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with patch.object(cron_dispatch, "get_active_credentials", AsyncMock(return_value=_credentials())):
            result = await trigger_acumatica_sync(session, http=http, now=NOW)

    assert result["status"] == "success"
    assert result["entity_types"] == ["invoice"]
    assert seen["url"] == "https://ar.example.test/internal/jobs/acumatica-sync"
    assert seen["auth"] == "Bearer svc"
    assert b'"scheduled_sync"' in seen["body"]
    assert _logged(session)[0].status == "success"


async def test_endpoint_error_is_recorded_without_touching_rows():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    session = _mock_session([_row("customer")])
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with patch.object(cron_dispatch, "get_active_credentials", AsyncMock(return_value=_credentials())):
            result = await trigger_acumatica_sync(session, http=http, now=NOW)

    assert result["status"] == "failed"
    assert "500" in result["error"]
    # Only the sync_status select; the sync endpoint owns the running mark
    assert session.execute.await_count == 1
    assert _logged(session)[0].status == "failed"


async def test_read_timeout_is_not_reposted():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    session = _mock_session([_row("invoice")])
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with patch.object(cron_dispatch, "get_active_credentials", AsyncMock(return_value=_credentials())):
            result = await trigger_acumatica_sync(session, http=http, now=NOW)

    assert result["status"] == "failed"
    assert len(calls) == 1
    assert _logged(session)[0].status == "failed"
