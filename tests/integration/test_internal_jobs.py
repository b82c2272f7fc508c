"""
/internal/jobs/* authentication and the cron_job_logs bookkeeping around each run.
"""

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from ar_api.config import settings
from ar_api.jobs import scheduled
from ar_api.models.sync import CronJobLog

SECRET = "job-secret"


@pytest.fixture
def job_secret():
    with patch.object(settings, "INTERNAL_JOB_SECRET", SECRET):
        yield {"X-Internal-Secret": SECRET}


def _cron_rows(mock_db):
    return [c.args[0] for c in mock_db.add.call_args_list if isinstance(c.args[0], CronJobLog)]


async def test_secret_not_configured_is_503(client):
    with patch.object(settings, "INTERNAL_JOB_SECRET", None), \
            patch.object(settings, "DEBUG", False):
        response = await client.post("/internal/jobs/auto-red")
    assert response.status_code == 503


async def test_wrong_secret_is_403(client, job_secret):
    response = await client.post(
        "/internal/jobs/auto-red", headers={"X-Internal-Secret": "nope"}
    )
    assert response.status_code == 403


async def test_job_success_is_logged(client, mock_db, job_secret):
    work = AsyncMock(return_value={"updated": 3})
    with patch.object(scheduled, "run_auto_red_status_checks", work):
        response = await client.post("/internal/jobs/auto-red", headers=job_secret)

    assert response.status_code == 200
    assert response.json() == {"status": "success", "updated": 3}
    rows = _cron_rows(mock_db)
    assert rows[0].job_name == "auto-red"
    assert rows[0].status == "success"


async def test_job_failure_still_answers_200(client, mock_db, job_secret):
    work = AsyncMock(side_effect=RuntimeError("db timeout"))
    with patch.object(scheduled, "process_email_schedule", work):
        response = await client.post("/internal/jobs/email-scheduler", headers=job_secret)

    assert response.status_code == 200
    assert response.json() == {"status": "failed", "error": "db timeout"}
    mock_db.rollback.assert_awaited_once()
    assert _cron_rows(mock_db)[0].status == "failed"


async def test_sync_accepts_credential_token(client, mock_db, job_secret):
    credentials = SimpleNamespace(service_token="svc-token")
    job = AsyncMock()
    with patch.object(scheduled, "get_active_credentials", AsyncMock(return_value=credentials)), \
            patch.object(scheduled, "run_acumatica_sync_job", job):
        response = await client.post(
            "/internal/jobs/acumatica-sync",
            json={"entity_types": ["invoice"]},
            headers={"Authorization": "Bearer svc-token"},
        )

    assert response.status_code == 202
    assert response.json() == {"status": "accepted", "entity_types": ["invoice"]}
    assert job.call_args.args == (["invoice"], None, "scheduled_sync")


async def test_sync_unknown_entity_is_400(client, job_secret):
    job = AsyncMock()
    with patch.object(scheduled, "run_acumatica_sync_job", job):
        response = await client.post(
            "/internal/jobs/acumatica-sync",
            json={"entity_types": ["vendor"]},
            headers=job_secret,
        )

    assert response.status_code == 400
    job.assert_not_called()



async def test_sync_rejects_wrong_token(client, job_secret):
    credentials = SimpleNamespace(service_token="svc-token")
    with patch.object(scheduled, "get_active_credentials", AsyncMock(return_value=credentials)):
        response = await client.post(
            "/internal/jobs/acumatica-sync",
            headers={"Authorization": "Bearer stolen"},
        )
    assert response.status_code == 403


async def test_user_created_hook(client, job_secret):
    profile = SimpleNamespace(id=uuid.uuid4(), role="user")
    hook = AsyncMock(return_value=profile)
    with patch.object(scheduled, "handle_new_user", hook):
        response = await client.post(
            "/internal/jobs/user-created",
            json={"id": str(profile.id), "email": "New.User@Example.com"},
            headers=job_secret,
        )

    assert response.status_code == 200
    assert response.json()["role"] == "user"
    assert hook.await_args.args[2] == "new.user@example.com"
