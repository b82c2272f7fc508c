"""
Batched pruning of append-only log tables.

Rows are deleted in id-selected batches so a single run never holds a long
lock, and a run stops after a bounded number of batches.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.config import settings
from ar_api.models.activity_log import UserActivityLog
from ar_api.models.sync import SyncChangeLog, CronJobLog

logger = structlog.get_logger()

MIN_RETENTION_DAYS = 30

# table key -> (model, timestamp column)
PRUNABLE_TABLES = {
    "sync_change_logs": (SyncChangeLog, SyncChangeLog.created_at),
    "user_activity_logs": (UserActivityLog, UserActivityLog.created_at),
    "cron_job_logs": (CronJobLog, CronJobLog.executed_at),
}


class RetentionPolicyError(ValueError):
    """Raised when a cleanup would violate the minimum retention window."""


async def _prune(
    session: AsyncSession,
    table: str,
    retention_days: int,
    batch_size: int,
    max_batches: int,
    now: Optional[datetime] = None,
) -> dict:
    if table not in PRUNABLE_TABLES:
        raise ValueError(f"Unknown log table: {table}")
    if retention_days < MIN_RETENTION_DAYS:
        raise RetentionPolicyError(
            f"Retention must be at least {MIN_RETENTION_DAYS} days (got {retention_days})"
        )
    if batch_size < 1 or max_batches < 1:
        raise ValueError("batch_size and max_batches must be positive")

    model, ts_column = PRUNABLE_TABLES[table]
    cutoff = (now or datetime.utcnow()) - timedelta(days=retention_days)

    deleted = 0
    batches = 0
    while batches < max_batches:
        ids = select(model.id).where(ts_column < cutoff).limit(batch_size).scalar_subquery()
        result = await session.execute(
            delete(model)
            .where(model.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        batches += 1
        count = result.rowcount or 0
        deleted += count
        if count < batch_size:
            break

    await session.flush()
    logger.info(
        "log_cleanup_completed",
        table=table,
        deleted=deleted,
        batches=batches,
        cutoff=cutoff.isoformat(),
    )
    return {
        "table": table,
        "deleted": deleted,
        "batches": batches,
        "cutoff": cutoff.isoformat(),
    }


async def cleanup_old_sync_logs(
    session: AsyncSession,
    retention_days: int = settings.SYNC_LOG_RETENTION_DAYS,
    batch_size: int = settings.SYNC_LOG_CLEANUP_BATCH_SIZE,
    max_batches: int = settings.SYNC_LOG_CLEANUP_MAX_BATCHES,
    now: Optional[datetime] = None,
) -> dict:
    """Delete sync_change_logs rows older than the retention window."""
    return await _prune(
        session, "sync_change_logs", retention_days, batch_size, max_batches, now
    )


async def cleanup_log_table(
    session: AsyncSession,
    table: str,
    retention_days: int,
    batch_size: int = settings.SYNC_LOG_CLEANUP_BATCH_SIZE,
    max_batches: int = settings.SYNC_LOG_CLEANUP_MAX_BATCHES,
    now: Optional[datetime] = None,
) -> dict:
    return await _prune(session, table, retention_days, batch_size, max_batches, now)
