import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.database import get_db
from ar_api.middleware.auth import get_current_user
from ar_api.middleware.authorization import (
    require_roles,
    check_self_or_admin,
    ADMIN_ROLES,
    MANAGER_ROLES,
)
from ar_api.middleware.rls import get_db_with_user
from ar_api.models.user import PendingUser, UserProfile
from ar_api.schemas.common import PaginatedResponse, build_pagination, iso
from ar_api.schemas.user import (
    AccessRequest,
    PendingUserReject,
    PendingUserResponse,
    UserProfileResponse,
    UserProfileUpdate,
    UserRoleUpdate,
)
from ar_api.services import user_service

logger = structlog.get_logger()
router = APIRouter()


def _to_response(u: UserProfile) -> UserProfileResponse:
    return UserProfileResponse(
        id=str(u.id),
        email=u.email,
        full_name=u.full_name,
        role=u.role,
        account_status=u.account_status,
        is_active=u.is_active,
        permissions=u.permissions or {},
        created_at=iso(u.created_at) or "",
    )


def _pending_to_response(p: PendingUser) -> PendingUserResponse:
    return PendingUserResponse(
        id=str(p.id),
        email=p.email,
        full_name=p.full_name,
        status=p.status,
        notes=p.notes,
        requested_at=iso(p.requested_at) or "",
        reviewed_by=str(p.reviewed_by) if p.reviewed_by else None,
        reviewed_at=iso(p.reviewed_at),
    )


async def _get_profile(db: AsyncSession, user_id) -> UserProfile:
    profile = await db.get(UserProfile, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    return profile


@router.get("", response_model=PaginatedResponse[UserProfileResponse])
async def list_users(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    conditions = []
    if role:
        conditions.append(UserProfile.role == role)
    if is_active is not None:
        conditions.append(UserProfile.is_active == is_active)

    total = (await db.execute(select(func.count(UserProfile.id)).where(*conditions))).scalar() or 0
    result = await db.execute(
        select(UserProfile)
        .where(*conditions)
        .order_by(UserProfile.email)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(u) for u in result.scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/me", response_model=UserProfileResponse)
async def get_me(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_with_user),
):
    return _to_response(await _get_profile(db, current_user["user_id"]))


@router.post(
    "/access-requests",
    response_model=PendingUserResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_access(body: AccessRequest, db: AsyncSession = Depends(get_db)):
    """Public signup request; an admin approves it before an account exists."""
    pending = await user_service.request_access(
        db, body.email.lower(), full_name=body.full_name, notes=body.notes
    )
    return _pending_to_response(pending)


@router.get("/pending", response_model=List[PendingUserResponse])
async def list_pending(
    status_filter: str = Query("pending", alias="status"),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    result = await db.execute(
        select(PendingUser)
        .where(PendingUser.status == status_filter)
        .order_by(PendingUser.requested_at)
    )
    return [_pending_to_response(p) for p in result.scalars().all()]


@router.post("/pending/{pending_id}/approve", response_model=PendingUserResponse)
async def approve_pending(
    pending_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    pending = await user_service.approve_pending_user(db, pending_id, current_user["user_id"])
    return _pending_to_response(pending)


@router.post("/pending/{pending_id}/reject", response_model=PendingUserResponse)
async def reject_pending(
    pending_id: uuid.UUID,
    body: PendingUserReject,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    pending = await user_service.reject_pending_user(
        db, pending_id, current_user["user_id"], notes=body.notes
    )
    return _pending_to_response(pending)


@router.get("/{user_id}", response_model=UserProfileResponse)
async def get_user(
    user_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_with_user),
):
    check_self_or_admin(current_user, user_id)
    return _to_response(await _get_profile(db, user_id))


@router.patch("/{user_id}", response_model=UserProfileResponse)
async def update_user(
    user_id: uuid.UUID,
    body: UserProfileUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_with_user),
):
    check_self_or_admin(current_user, user_id)
    profile = await _get_profile(db, user_id)

    # Non-admin users can only update their own name
    admin_only_fields = {"is_active", "permissions"}
    for field, value in body.model_dump(exclude_none=True).items():
        if field in admin_only_fields and current_user["role"] != "admin":
            continue
        setattr(profile, field, value)

    await db.flush()
    return _to_response(profile)


@router.patch("/{user_id}/role", response_model=UserProfileResponse)
async def update_role(
    user_id: uuid.UUID,
    body: UserRoleUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    if str(user_id) == str(current_user["user_id"]) and body.role != "admin":
        raise HTTPException(status_code=400, detail="Admins cannot demote themselves")
    profile = await user_service.update_user_role(db, user_id, body.role, current_user["user_id"])
    return _to_response(profile)
