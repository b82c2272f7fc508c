from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ar_api.database import get_db, set_request_user
from ar_api.middleware.auth import get_current_user


async def get_db_with_user(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AsyncSession:
    """FastAPI dependency: DB session with the caller exposed to RLS policies."""
    await set_request_user(db, current_user["user_id"], current_user["role"])
    return db
