from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.config import settings
from ar_api.database import get_db
from ar_api.models.user import UserProfile, VALID_ROLES

logger = structlog.get_logger()

security = HTTPBearer()


def decode_access_token(token: str) -> dict:
    """Verify a token minted by the hosted auth provider and return its claims."""
    payload = jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
    )
    if not payload.get("sub"):
        raise JWTError("Token has no subject")
    return payload


def _claimed_role(payload: dict):
    """Role hint from app_metadata; the top-level role claim is the DB role."""
    role = (payload.get("app_metadata") or {}).get("role")
    return role if role in VALID_ROLES else None


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": {"code": "AUTH_TOKEN_INVALID", "message": message}},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def load_profile(db: AsyncSession, user_id: str):
    result = await db.execute(
        select(UserProfile.role, UserProfile.email, UserProfile.is_active).where(
            UserProfile.id == user_id
        )
    )
    return result.one_or_none()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """
    FastAPI dependency: verify the JWT and resolve the caller's app role.

    The profile row is authoritative for role and is_active. The token's
    app_metadata role is only compared against it, since a token stays
    valid until expiry after an admin changes or disables the user.
    """
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise _unauthorized("Invalid or expired token")

    user_id = payload["sub"]
    profile = await load_profile(db, user_id)
    if profile is None:
        logger.warning("auth_profile_missing", user_id=user_id)
        raise _unauthorized("No profile for this user")
    if not profile.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": {"code": "ACCOUNT_INACTIVE", "message": "Account is disabled"}},
        )

    claimed = _claimed_role(payload)
    if claimed is not None and claimed != profile.role:
        logger.info(
            "auth_role_claim_stale", user_id=user_id, claimed=claimed, role=profile.role
        )

    return {
        "user_id": user_id,
        "email": payload.get("email") or profile.email,
        "role": profile.role,
    }
