"""
Unit tests for ar_api/services/user_service.py
"""

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from ar_api.config import settings
from ar_api.services import user_service
from ar_api.services.user_service import (
    approve_pending_user,
    initial_role_for,
    request_access,
    update_user_role,
)


def _mock_session():
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


def _scalar_result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


@pytest.fixture(autouse=True)
def _no_activity_log():
    with patch.object(user_service, "log_user_activity", AsyncMock()) as log_mock:
        yield log_mock


def test_initial_role_from_admin_list():
    with patch.object(settings, "ADMIN_EMAILS", "Boss@X.test, ops@x.test"):
        assert initial_role_for("boss@x.test") == "admin"
        assert initial_role_for(" OPS@x.test ") == "admin"
        assert initial_role_for("someone@x.test") == "user"


async def test_request_access_twice_conflicts():
    session = _mock_session()
    session.execute.return_value = _scalar_result(SimpleNamespace(email="a@x.test"))

    with pytest.raises(HTTPException) as exc:
        await request_access(session, "a@x.test")

    assert exc.value.status_code == 409


async def test_request_access_creates_pending_row():
    session = _mock_session()
    session.execute.return_value = _scalar_result(None)

    pending = await request_access(session, "a@x.test", "Ann")

    assert pending.status == "pending"
    session.add.assert_called_once_with(pending)


async def test_approve_already_reviewed_conflicts():
    session = _mock_session()
    session.get.return_value = SimpleNamespace(status="rejected")

    with pytest.raises(HTTPException) as exc:
        await approve_pending_user(session, uuid.uuid4(), uuid.uuid4())

    assert exc.value.status_code == 409


async def test_approve_pending_user(_no_activity_log):
    session = _mock_session()
    pending = SimpleNamespace(id=uuid.uuid4(), email="a@x.test", status="pending")
    session.get.return_value = pending
    reviewer = uuid.uuid4()

    await approve_pending_user(session, pending.id, reviewer)

    assert pending.status == "approved"
    assert pending.reviewed_by == reviewer
    assert _no_activity_log.await_args.kwargs["action_type"] == "user_approved"


async def test_invalid_role_rejected():
    with pytest.raises(HTTPException) as exc:
        await update_user_role(_mock_session(), uuid.uuid4(), "superuser", uuid.uuid4())
    assert exc.value.status_code == 400


async def test_role_change_is_logged(_no_activity_log):
    session = _mock_session()
    profile = SimpleNamespace(id=uuid.uuid4(), role="customer", updated_at=None)
    session.get.return_value = profile

    await update_user_role(session, profile.id, "collector", uuid.uuid4())

    assert profile.role == "collector"
    details = _no_activity_log.await_args.kwargs["details"]
    assert details == {"old_role": "customer", "new_role": "collector"}


async def test_same_role_is_noop(_no_activity_log):
    session = _mock_session()
    session.get.return_value = SimpleNamespace(id=uuid.uuid4(), role="viewer")

    await update_user_role(session, uuid.uuid4(), "viewer", uuid.uuid4())

    _no_activity_log.assert_not_awaited()
    session.flush.assert_not_awaited()
