from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.middleware.auth import get_current_user
from ar_api.middleware.authorization import require_roles, MANAGER_ROLES, ADMIN_ROLES
from ar_api.middleware.rls import get_db_with_user
from ar_api.models.sync import SyncChangeLog, SyncStatus, SYNC_ACTIONS, SYNC_TYPES
from ar_api.schemas.common import PaginatedResponse, build_pagination, iso
from ar_api.schemas.sync import (
    SyncChangeLogResponse,
    SyncRunRequest,
    SyncStatusResponse,
    SyncStatusUpdate,
)
from ar_api.services.sync_service import run_incremental_sync

logger = structlog.get_logger()
router = APIRouter()


def _status_to_response(s: SyncStatus) -> SyncStatusResponse:
    return SyncStatusResponse(
        entity_type=s.entity_type,
        status=s.status,
        last_sync_started_at=iso(s.last_sync_started_at),
        last_sync_completed_at=iso(s.last_sync_completed_at),
        last_successful_sync=iso(s.last_successful_sync),
        records_synced=s.records_synced or 0,
        records_updated=s.records_updated or 0,
        records_created=s.records_created or 0,
        errors=[str(e) for e in (s.errors or [])],
        last_error=s.last_error,
        sync_enabled=s.sync_enabled,
        sync_interval_minutes=s.sync_interval_minutes,
        lookback_minutes=s.lookback_minutes,
    )


@router.get("/status", response_model=List[SyncStatusResponse])
async def sync_status(
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    result = await db.execute(select(SyncStatus).order_by(SyncStatus.entity_type))
    return [_status_to_response(s) for s in result.scalars().all()]


@router.patch("/status/{entity_type}", response_model=SyncStatusResponse)
async def update_sync_settings(
    entity_type: str,
    body: SyncStatusUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    result = await db.execute(select(SyncStatus).where(SyncStatus.entity_type == entity_type))
    row = result.scalar_one_or_none()
    if not row:
        raise HTTPException(status_code=404, detail="Sync status not found")
    for field, value in body.model_dump(exclude_none=True).items():
        setattr(row, field, value)
    await db.flush()
    logger.info("sync_settings_updated", entity_type=entity_type, by=current_user["user_id"])
    return _status_to_response(row)


@router.post("/run")
async def run_sync(
    body: SyncRunRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    """Manual sync from the dashboard; runs inline in the request."""
    try:
        return await run_incremental_sync(
            db,
            entity_types=body.entity_types,
            lookback_minutes=body.lookback_minutes,
            sync_source="manual_sync",
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/change-logs", response_model=PaginatedResponse[SyncChangeLogResponse])
async def change_logs(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(50, ge=1, le=200),
    sync_type: Optional[str] = Query(None),
    action_type: Optional[str] = Query(None),
    entity_reference: Optional[str] = Query(None),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    if sync_type and sync_type not in SYNC_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown sync_type '{sync_type}'")
    if action_type and action_type not in SYNC_ACTIONS:
        raise HTTPException(status_code=400, detail=f"Unknown action_type '{action_type}'")

    conditions = []
    if sync_type:
        conditions.append(SyncChangeLog.sync_type == sync_type)
    if action_type:
        conditions.append(SyncChangeLog.action_type == action_type)
    if entity_reference:
        conditions.append(SyncChangeLog.entity_reference == entity_reference)

    total = (
        await db.execute(select(func.count(SyncChangeLog.id)).where(*conditions))
    ).scalar() or 0
    result = await db.execute(
        select(SyncChangeLog)
        .where(*conditions)
        .order_by(SyncChangeLog.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [
        SyncChangeLogResponse(
            id=str(c.id),
            sync_type=c.sync_type,
            action_type=c.action_type,
            entity_id=c.entity_id,
            entity_reference=c.entity_reference,
            entity_name=c.entity_name,
            change_summary=c.change_summary,
            change_details=c.change_details,
            sync_source=c.sync_source,
            user_id=str(c.user_id) if c.user_id else None,
            created_at=iso(c.created_at) or "",
        )
        for c in result.scalars().all()
    ]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))
