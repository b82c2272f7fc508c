"""
HTTP-level checks against the FastAPI app with the database session mocked.

Tests:
- /health reports db and storage checks
- token verification and role resolution
- error envelope for bad reference numbers
- role enforcement on collection endpoints
"""

import uuid
from unittest.mock import MagicMock, patch

from ar_api.services.storage import memo_storage


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


async def test_health_check(client):
    with patch.object(memo_storage, "s3", MagicMock()):
        response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["checks"] == {"db": "ok", "storage": "ok"}


async def test_health_degraded_when_storage_down(client):
    s3 = MagicMock()
    s3.head_bucket.side_effect = RuntimeError("no bucket")
    with patch.object(memo_storage, "s3", s3):
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"


async def test_health_unhealthy_when_db_down(client, mock_db):
    mock_db.execute.side_effect = RuntimeError("connection refused")
    with patch.object(memo_storage, "s3", MagicMock()):
        response = await client.get("/health")

    assert response.status_code == 503
    assert response.json()["checks"]["db"] == "error"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


async def test_invalid_token_is_401(client):
    response = await client.get("/api/v1/invoices/001234", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_TOKEN_INVALID"


async def test_expired_token_is_401(client, token_for):
    headers = token_for(role="collector", expires_minutes=-5)
    response = await client.get("/api/v1/invoices/001234", headers=headers)

    assert response.status_code == 401


def _profile(profiles, role):
    return next(p for p in profiles.values() if p.role == role)


async def test_inactive_profile_is_403(client, profiles, collector_headers):
    _profile(profiles, "collector").is_active = False

    response = await client.get("/api/v1/invoices/001234", headers=collector_headers)

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ACCOUNT_INACTIVE"


async def test_missing_profile_is_401(client, token_for):
    response = await client.get(
        "/api/v1/invoices/001234", headers=token_for(user_id=str(uuid.uuid4()), role="admin")
    )

    assert response.status_code == 401


async def test_profile_role_overrides_token_claim(client, profiles, admin_headers):
    # Demoted after the token was issued
    _profile(profiles, "admin").role = "viewer"

    response = await client.patch(
        "/api/v1/invoices/001234/color-status",
        json={"color_status": "red"},
        headers=admin_headers,
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"



# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


async def test_bad_reference_number_is_400(client, collector_headers):
    response = await client.get("/api/v1/invoices/INV-12", headers=collector_headers)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BAD_REQUEST"


async def test_unknown_invoice_is_404(client, mock_db, collector_headers):
    mock_db.execute.return_value.scalar_one_or_none.return_value = None

    response = await client.get("/api/v1/invoices/1234", headers=collector_headers)

    assert response.status_code == 404
    assert response.json()["error"] == {"code": "NOT_FOUND", "message": "Invoice not found"}


async def test_viewer_cannot_set_color(client, viewer_headers):
    response = await client.patch(
        "/api/v1/invoices/001234/color-status",
        json={"color_status": "red"},
        headers=viewer_headers,
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"
