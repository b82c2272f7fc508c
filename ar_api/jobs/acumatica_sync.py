# ar_api/jobs/acumatica_sync.py
"""
Acumatica sync background worker.
Scheduled by POST /internal/jobs/acumatica-sync after the endpoint answers 202.
"""

from typing import Optional

import structlog

from ar_api.database import AsyncSessionLocal
from ar_api.services.cron_dispatch import record_cron_run
from ar_api.services.sync_service import (
    claim_sync_entities,
    get_or_create_sync_status,
    mark_sync_failed,
    run_incremental_sync,
)

logger = structlog.get_logger()

JOB_NAME = "acumatica-sync"


async def run_acumatica_sync_job(
    entity_types: list[str],
    lookback_minutes: Optional[int] = None,
    sync_source: str = "scheduled_sync",
):
    """
    Claim the requested entities, then pull them from Acumatica.
    The claim is committed on its own so the dispatcher sees the rows as
    running for the whole pull and does not post a second run.
    """
    async with AsyncSessionLocal() as session:
        claimed: list[str] = []
        try:
            claimed = await claim_sync_entities(session, entity_types)
            await session.commit()

            if not claimed:
                logger.info("acumatica_sync_already_running", entity_types=entity_types)
                await record_cron_run(
                    session, JOB_NAME, "skipped", "All requested entities already running"
                )
                await session.commit()
                return

            result = await run_incremental_sync(
                session,
                entity_types=claimed,
                lookback_minutes=lookback_minutes,
                sync_source=sync_source,
            )
            status = "success" if result.get("status") != "failed" else "failed"
            await record_cron_run(
                session,
                JOB_NAME,
                status,
                f"Synced {', '.join(claimed)}",
                {"entity_types": claimed, "status": result.get("status")},
            )
            await session.commit()
            logger.info("acumatica_sync_job_complete", entity_types=claimed, status=status)

        except Exception as e:
            await session.rollback()
            logger.error("acumatica_sync_job_failed", entity_types=claimed, error=str(e))
            # Claimed rows would otherwise stay running until they go stale
            for entity_type in claimed:
                status_row = await get_or_create_sync_status(session, entity_type)
                await mark_sync_failed(session, status_row, str(e))
            await record_cron_run(session, JOB_NAME, "failed", str(e)[:2000])
            await session.commit()
