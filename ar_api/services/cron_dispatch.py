"""
Scheduler-side dispatch of the Acumatica sync.

The scheduler hits /internal/jobs/dispatch-sync every minute. Dispatch works
out whether any entity is due and posts the sync request to the service named
in the active credential row. It holds no row locks while posting: the sync
endpoint claims the sync_status rows itself, in its own committed transaction,
and answers 202 before the pull starts. Dispatch never raises: failures land
in cron_job_logs and the next tick tries again.
"""

from datetime import datetime, timedelta
from typing import Optional
import logging

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)
import structlog

from ar_api.models.sync import CronJobLog, SyncStatus
from ar_api.services.sync_service import get_active_credentials, running_is_stale

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

JOB_NAME = "acumatica-sync-dispatch"
SYNC_PATH = "/internal/jobs/acumatica-sync"


def is_sync_due(row: SyncStatus, now: datetime) -> bool:
    if not row.sync_enabled:
        return False
    if row.status == "running":
        return running_is_stale(row.last_sync_started_at, now)
    if row.last_successful_sync is None:
        return True
    interval = timedelta(minutes=row.sync_interval_minutes or 5)
    return row.last_successful_sync <= now - interval


async def record_cron_run(
    session: AsyncSession,
    job_name: str,
    status: str,
    message: Optional[str] = None,
    details: Optional[dict] = None,
) -> None:
    session.add(
        CronJobLog(
            job_name=job_name,
            status=status,
            message=message,
            details=details,
            executed_at=datetime.utcnow(),
        )
    )
    await session.flush()


@retry(
    # Only retry when the request never reached the server; a read timeout may
    # mean the sync was accepted, and re-posting would queue it twice
    retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    before_sleep=before_sleep_log(_std_logger, logging.WARNING),
    reraise=True,
)
async def _post_sync_request(
    http: httpx.AsyncClient, url: str, token: str, entity_types: list[str]
) -> httpx.Response:
    return await http.post(
        url,
        headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
        json={"entity_types": entity_types, "sync_source": "scheduled_sync"},
    )


async def trigger_acumatica_sync(
    session: AsyncSession,
    http: Optional[httpx.AsyncClient] = None,
    now: Optional[datetime] = None,
) -> dict:
    now = now or datetime.utcnow()
    due: list[str] = []
    try:
        credentials = await get_active_credentials(session)
        if credentials is None or not credentials.service_base_url:
            await record_cron_run(session, JOB_NAME, "skipped", "No active credentials")
            return {"status": "skipped", "reason": "no_credentials"}

        rows = (await session.execute(select(SyncStatus))).scalars().all()
        due = [row.entity_type for row in rows if is_sync_due(row, now)]
        if not due:
            return {"status": "skipped", "reason": "not_due"}

        url = credentials.service_base_url.rstrip("/") + SYNC_PATH
        owns_client = http is None
        http = http or httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
        try:
            response = await _post_sync_request(
                http, url, credentials.service_token or "", due
            )
        finally:
            if owns_client:
                await http.aclose()

        if response.status_code >= 400:
            raise RuntimeError(
                f"Sync endpoint returned {response.status_code}: {response.text[:200]}"
            )
        status = "success"
        await record_cron_run(
            session,
            JOB_NAME,
            status,
            f"Dispatched sync for {', '.join(due)}",
            {"entity_types": due, "status_code": response.status_code},
        )
        logger.info(
            "acumatica_sync_dispatched",
            entity_types=due,
            status_code=response.status_code,
        )
        return {"status": status, "entity_types": due, "status_code": response.status_code}

    except Exception as exc:
        logger.error("acumatica_sync_dispatch_failed", error=str(exc), entity_types=due)
        await record_cron_run(session, JOB_NAME, "failed", str(exc)[:2000])
        return {"status": "failed", "error": str(exc)}
