from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ar_api.middleware.auth import get_current_user
from ar_api.middleware.authorization import require_roles, MANAGER_ROLES
from ar_api.middleware.rls import get_db_with_user
from ar_api.models.activity_log import UserActivityLog
from ar_api.models.user import UserProfile
from ar_api.schemas.activity import UserActivityResponse
from ar_api.schemas.common import PaginatedResponse, build_pagination, iso

router = APIRouter()


@router.get("", response_model=PaginatedResponse[UserActivityResponse])
async def list_activity_logs(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(50, ge=1, le=200),
    user_id: Optional[str] = Query(None),
    action_type: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    conditions = []
    if user_id:
        conditions.append(UserActivityLog.user_id == user_id)
    if action_type:
        conditions.append(UserActivityLog.action_type == action_type)
    if entity_type:
        conditions.append(UserActivityLog.entity_type == entity_type)
    if entity_id:
        conditions.append(UserActivityLog.entity_id == entity_id)
    if date_from:
        conditions.append(func.date(UserActivityLog.created_at) >= date_from)
    if date_to:
        conditions.append(func.date(UserActivityLog.created_at) <= date_to)

    total = (
        await db.execute(select(func.count(UserActivityLog.id)).where(*conditions))
    ).scalar() or 0
    result = await db.execute(
        select(UserActivityLog, UserProfile.email)
        .outerjoin(UserProfile, UserProfile.id == UserActivityLog.user_id)
        .where(*conditions)
        .order_by(UserActivityLog.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [
        UserActivityResponse(
            id=str(log.id),
            user_id=str(log.user_id) if log.user_id else None,
            user_email=email,
            action_type=log.action_type,
            entity_type=log.entity_type,
            entity_id=log.entity_id,
            details=log.details,
            ip_address=str(log.ip_address) if log.ip_address else None,
            created_at=iso(log.created_at) or "",
        )
        for log, email in result.all()
    ]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))
