"""
Unit tests for ar_api/jobs/acumatica_sync.py

AsyncSessionLocal is replaced with a factory yielding one AsyncMock session.
"""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

from ar_api.jobs import acumatica_sync as job
from ar_api.models.sync import CronJobLog


def _session_factory(session):
    @asynccontextmanager
    async def _factory():
        yield session

    return _factory


def _mock_session():
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    return session


def _logged(session):
    return [c.args[0] for c in session.add.call_args_list if isinstance(c.args[0], CronJobLog)]


async def test_claim_is_committed_before_the_pull():
    session = _mock_session()
    order = []
    session.commit.side_effect = lambda: order.append("commit")

    async def pull(*args, **kwargs):
        order.append("pull")
        return {"status": "completed", "results": {}}

    with patch.object(job, "AsyncSessionLocal", _session_factory(session)), \
            patch.object(job, "claim_sync_entities", AsyncMock(return_value=["invoice"])), \
            patch.object(job, "run_incremental_sync", AsyncMock(side_effect=pull)) as sync:
        await job.run_acumatica_sync_job(["invoice", "payment"])

    assert order == ["commit", "pull", "commit"]
    assert sync.await_args.kwargs["entity_types"] == ["invoice"]
    assert _logged(session)[0].status == "success"


async def test_nothing_claimed_skips_pull():
    session = _mock_session()
    sync = AsyncMock()
    with patch.object(job, "AsyncSessionLocal", _session_factory(session)), \
            patch.object(job, "claim_sync_entities", AsyncMock(return_value=[])), \
            patch.object(job, "run_incremental_sync", sync):
        await job.run_acumatica_sync_job(["invoice"])

    sync.assert_not_awaited()
    assert _logged(session)[0].status == "skipped"


async def test_crash_marks_claimed_rows_failed():
    session = _mock_session()
    status_row = MagicMock()
    failed = AsyncMock()
    with patch.object(job, "AsyncSessionLocal", _session_factory(session)), \
            patch.object(job, "claim_sync_entities", AsyncMock(return_value=["customer"])), \
            patch.object(job, "run_incremental_sync", AsyncMock(side_effect=RuntimeError("lost"))), \
            patch.object(job, "get_or_create_sync_status", AsyncMock(return_value=status_row)), \
            patch.object(job, "mark_sync_failed", failed):
        await job.run_acumatica_sync_job(["customer"])

    session.rollback.assert_awaited_once()
    failed.assert_awaited_once_with(session, status_row, "lost")
    assert _logged(session)[0].status == "failed"
