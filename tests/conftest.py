import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt

from ar_api.config import settings
from ar_api.database import get_db
from ar_api.main import app
from ar_api.middleware import auth

ADMIN_ID = "a0000000-0000-0000-0000-000000000001"
COLLECTOR_ID = "c0000000-0000-0000-0000-000000000002"
VIEWER_ID = "e0000000-0000-0000-0000-000000000003"


def make_token(user_id: str, role=None, email="user@ar.test", expires_minutes=30) -> str:
    """Mint a token shaped like the hosted auth provider's."""
    claims = {
        "sub": user_id,
        "email": email,
        "aud": settings.JWT_AUDIENCE,
        "role": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
    }
    if role:
        claims["app_metadata"] = {"role": role}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    return bearer(make_token(ADMIN_ID, "admin", "admin@ar.test"))


@pytest.fixture
def collector_headers():
    return bearer(make_token(COLLECTOR_ID, "collector", "collector@ar.test"))


@pytest.fixture
def viewer_headers():
    return bearer(make_token(VIEWER_ID, "viewer", "viewer@ar.test"))


@pytest.fixture
def mock_db():
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    return session


@pytest.fixture
def profiles():
    """Profile rows served to get_current_user, keyed by user id. Tests may edit them."""
    return {
        ADMIN_ID: SimpleNamespace(role="admin", email="admin@ar.test", is_active=True),
        COLLECTOR_ID: SimpleNamespace(role="collector", email="collector@ar.test", is_active=True),
        VIEWER_ID: SimpleNamespace(role="viewer", email="viewer@ar.test", is_active=True),
    }


@pytest.fixture
async def client(mock_db, profiles):
    async def _override_get_db():
        yield mock_db

    async def _load_profile(db, user_id):
        return profiles.get(user_id)

    app.dependency_overrides[get_db] = _override_get_db
    with patch.object(auth, "load_profile", _load_profile):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            yield c
    app.dependency_overrides.clear()



@pytest.fixture
def random_id():
    return str(uuid.uuid4())


@pytest.fixture
def token_for():
    """Build Authorization headers: token_for(user_id, role=None, expires_minutes=30)."""
    def _headers(user_id=COLLECTOR_ID, role=None, **kwargs):
        return bearer(make_token(user_id, role, **kwargs))

    return _headers
