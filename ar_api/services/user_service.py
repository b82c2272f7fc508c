"""
User profiles and signup approval.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.config import settings
from ar_api.models.user import PendingUser, UserProfile, VALID_ROLES
from ar_api.services.activity_service import log_user_activity

logger = structlog.get_logger()

DEFAULT_ROLE = "user"


def initial_role_for(email: str) -> str:
    if email and email.strip().lower() in settings.admin_emails_list:
        return "admin"
    return DEFAULT_ROLE


async def handle_new_user(
    session: AsyncSession,
    auth_user_id: Any,
    email: str,
    metadata: Optional[dict] = None,
) -> UserProfile:
    """
    Create or refresh the profile for a freshly signed-up auth user.

    Users approved out of pending_users carry their requested full_name in
    metadata; everyone else starts as a plain user unless listed in ADMIN_EMAILS.
    """
    metadata = metadata or {}
    full_name = metadata.get("full_name")
    if metadata.get("approved_from_pending") and not full_name:
        pending = await session.execute(
            select(PendingUser.full_name).where(PendingUser.email == email)
        )
        full_name = pending.scalar_one_or_none()

    now = datetime.utcnow()
    stmt = pg_insert(UserProfile).values(
        id=auth_user_id,
        email=email,
        full_name=full_name,
        role=initial_role_for(email),
        account_status="approved",
        is_active=True,
        permissions={},
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[UserProfile.id],
        set_={
            "email": stmt.excluded.email,
            "full_name": stmt.excluded.full_name,
            "updated_at": now,
        },
    ).returning(UserProfile)
    result = await session.execute(stmt)
    profile = result.scalar_one()
    logger.info("user_profile_upserted", user_id=str(auth_user_id), role=profile.role)
    return profile


async def request_access(
    session: AsyncSession, email: str, full_name: Optional[str] = None, notes: Optional[str] = None
) -> PendingUser:
    existing = await session.execute(select(PendingUser).where(PendingUser.email == email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Access already requested")
    pending = PendingUser(email=email, full_name=full_name, notes=notes, status="pending")
    session.add(pending)
    await session.flush()
    logger.info("pending_user_requested", email=email)
    return pending


async def _get_pending(session: AsyncSession, pending_id: Any) -> PendingUser:
    pending = await session.get(PendingUser, pending_id)
    if not pending:
        raise HTTPException(status_code=404, detail="Pending user not found")
    if pending.status != "pending":
        raise HTTPException(
            status_code=409, detail=f"Request already {pending.status}"
        )
    return pending


async def approve_pending_user(
    session: AsyncSession, pending_id: Any, reviewer_id: Any
) -> PendingUser:
    pending = await _get_pending(session, pending_id)
    pending.status = "approved"
    pending.reviewed_by = reviewer_id
    pending.reviewed_at = datetime.utcnow()
    await session.flush()

    await log_user_activity(
        session,
        user_id=reviewer_id,
        action_type="user_approved",
        entity_type="pending_user",
        entity_id=pending.id,
        details={"email": pending.email},
    )
    logger.info("pending_user_approved", email=pending.email, reviewer=str(reviewer_id))
    return pending


async def reject_pending_user(
    session: AsyncSession, pending_id: Any, reviewer_id: Any, notes: Optional[str] = None
) -> PendingUser:
    pending = await _get_pending(session, pending_id)
    pending.status = "rejected"
    pending.reviewed_by = reviewer_id
    pending.reviewed_at = datetime.utcnow()
    if notes:
        pending.notes = notes
    await session.flush()

    await log_user_activity(
        session,
        user_id=reviewer_id,
        action_type="user_rejected",
        entity_type="pending_user",
        entity_id=pending.id,
        details={"email": pending.email, "notes": notes},
    )
    return pending


async def update_user_role(
    session: AsyncSession, user_id: Any, role: str, changed_by: Any
) -> UserProfile:
    if role not in VALID_ROLES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid role '{role}'. Allowed: {', '.join(VALID_ROLES)}",
        )
    profile = await session.get(UserProfile, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")

    old_role = profile.role
    if old_role == role:
        return profile

    profile.role = role
    profile.updated_at = datetime.utcnow()
    await session.flush()

    await log_user_activity(
        session,
        user_id=changed_by,
        action_type="role_changed",
        entity_type="user",
        entity_id=profile.id,
        details={"old_role": old_role, "new_role": role},
    )
    logger.info("user_role_changed", user_id=str(user_id), old=old_role, new=role)
    return profile
