# ar_api/jobs/scheduled.py
"""
Scheduled background jobs triggered by the database scheduler → API endpoints.

Jobs:
  - auto-red: Daily at 06:00 UTC
  - auto-ticket-rules: Daily at 06:30 UTC
  - cleanup-sync-logs: Daily at 03:00 UTC
  - cleanup-cron-logs: Weekly, Sunday 03:30 UTC
  - email-scheduler: Every 2 minutes
  - invoice-reminders: Every 5 minutes
  - dispatch-sync: Every minute (posts to acumatica-sync when an entity is due)
  - acumatica-sync: On dispatch, authenticated with the credential row's token;
    answers 202 and runs the pull as a background task

Every job records its outcome in cron_job_logs and answers 200 even when the
work failed, so the scheduler never retries a half-done run.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.config import settings
from ar_api.database import get_db
from ar_api.schemas.sync import SyncRunRequest
from ar_api.schemas.user import NewAuthUser
from ar_api.services.auto_ticket_rules_service import process_auto_ticket_rules
from ar_api.services.cron_dispatch import record_cron_run, trigger_acumatica_sync
from ar_api.services.email_scheduler import process_email_schedule
from ar_api.services.invoice_status_service import run_auto_red_status_checks
from ar_api.services.reminder_service import check_invoice_reminders
from ar_api.services.retention_service import cleanup_log_table, cleanup_old_sync_logs
from ar_api.jobs.acumatica_sync import run_acumatica_sync_job
from ar_api.models.sync import SYNC_SOURCES
from ar_api.services.sync_service import ENTITY_SYNCS, get_active_credentials
from ar_api.services.user_service import handle_new_user

logger = structlog.get_logger()
router = APIRouter()


async def _require_internal_auth(request: Request):
    """
    Verify request comes from the scheduler or an internal service.
    Validates X-Internal-Secret header against INTERNAL_JOB_SECRET from settings.
    """
    secret = settings.INTERNAL_JOB_SECRET
    if not secret:
        # In development (DEBUG=True), allow unauthenticated internal calls
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="INTERNAL_JOB_SECRET is not configured",
        )
    provided = request.headers.get("X-Internal-Secret")
    if not provided or provided != secret:
        logger.warning("internal_auth_failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )


async def _require_sync_auth(request: Request, db: AsyncSession = Depends(get_db)):
    """Dispatch posts with the credential row's bearer token instead of the secret."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        credentials = await get_active_credentials(db)
        token = auth_header[len("Bearer "):]
        if credentials is not None and credentials.service_token and token == credentials.service_token:
            return
        logger.warning("sync_token_rejected", path=request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    await _require_internal_auth(request)


async def _run_job(
    db: AsyncSession,
    job_name: str,
    work: Callable[[], Awaitable[dict]],
) -> dict:
    started = datetime.utcnow()
    try:
        summary = await work()
    except Exception as e:
        logger.error("scheduled_job_failed", job=job_name, error=str(e))
        await db.rollback()
        await record_cron_run(db, job_name, "failed", str(e)[:2000])
        return {"status": "failed", "error": str(e)}

    elapsed_ms = int((datetime.utcnow() - started).total_seconds() * 1000)
    await record_cron_run(
        db, job_name, "success", details={"summary": summary, "elapsed_ms": elapsed_ms}
    )
    logger.info("scheduled_job_complete", job=job_name, elapsed_ms=elapsed_ms)
    return {"status": "success", **summary}


@router.post("/auto-red")
async def auto_red(
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    """Daily: flag overdue and untouched invoices red per customer threshold."""
    return await _run_job(db, "auto-red", lambda: run_auto_red_status_checks(db))


@router.post("/auto-ticket-rules")
async def auto_ticket_rules(
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    return await _run_job(db, "auto-ticket-rules", lambda: process_auto_ticket_rules(db))


@router.post("/cleanup-sync-logs")
async def cleanup_sync_logs(
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    """Daily: prune sync_change_logs older than the retention window."""
    return await _run_job(db, "cleanup-sync-logs", lambda: cleanup_old_sync_logs(db))


@router.post("/cleanup-cron-logs")
async def cleanup_cron_logs(
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    return await _run_job(
        db,
        "cleanup-cron-logs",
        lambda: cleanup_log_table(db, "cron_job_logs", settings.CRON_LOG_RETENTION_DAYS),
    )


@router.post("/email-scheduler")
async def email_scheduler(
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    return await _run_job(db, "email-scheduler", lambda: process_email_schedule(db))


@router.post("/invoice-reminders")
async def invoice_reminders(
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    return await _run_job(db, "invoice-reminders", lambda: check_invoice_reminders(db))


@router.post("/dispatch-sync")
async def dispatch_sync(
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    # trigger_acumatica_sync records its own cron_job_logs row and never raises
    return await trigger_acumatica_sync(db)


@router.post("/acumatica-sync", status_code=status.HTTP_202_ACCEPTED)
async def acumatica_sync(
    background_tasks: BackgroundTasks,
    body: Optional[SyncRunRequest] = Body(None),
    _auth: None = Depends(_require_sync_auth),
):
    """Accept a sync run and pull from Acumatica in the background."""
    body = body or SyncRunRequest()
    entity_types = body.entity_types or list(ENTITY_SYNCS)
    unknown = [e for e in entity_types if e not in ENTITY_SYNCS]
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown entity types: {', '.join(unknown)}",
        )
    if body.sync_source not in SYNC_SOURCES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid sync_source: {body.sync_source}",
        )
    background_tasks.add_task(
        run_acumatica_sync_job, entity_types, body.lookback_minutes, body.sync_source
    )
    logger.info("acumatica_sync_accepted", entity_types=entity_types)
    return {"status": "accepted", "entity_types": entity_types}


@router.post("/user-created")
async def user_created(
    body: NewAuthUser,
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    """Auth provider hook: create the profile row for a new sign-up."""
    profile = await handle_new_user(db, body.id, body.email.lower(), body.user_metadata)
    return {"id": str(profile.id), "role": profile.role}
