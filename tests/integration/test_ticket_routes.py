"""
Ticket endpoints with ticket_service patched out.
"""

import uuid
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from ar_api.services import ticket_service


def _ticket(**overrides):
    values = dict(
        id=uuid.uuid4(),
        ticket_number="TKT-000042",
        customer_id="C001",
        customer_name="Acme",
        assigned_collector_id=None,
        assigned_at=None,
        assigned_by=None,
        status="open",
        priority="medium",
        ticket_type=None,
        promise_date=None,
        notes=None,
        created_by=None,
        resolved_at=None,
        created_at=datetime(2026, 3, 5, 12, 0),
        updated_at=datetime(2026, 3, 5, 12, 0),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


async def test_create_ticket(client, collector_headers):
    ticket = _ticket()
    create_mock = AsyncMock(return_value=ticket)

    with patch.object(ticket_service, "create_ticket", create_mock), \
            patch.object(ticket_service, "ticket_invoice_refs", AsyncMock(return_value=["001234"])):
        response = await client.post(
            "/api/v1/tickets",
            json={"customer_id": "C001", "invoice_reference_numbers": ["1234"]},
            headers=collector_headers,
        )

    assert response.status_code == 201
    data = response.json()
    assert data["ticket_number"] == "TKT-000042"
    assert data["invoice_reference_numbers"] == ["001234"]
    assert create_mock.await_args.kwargs["invoice_reference_numbers"] == ["1234"]


async def test_create_ticket_requires_customer(client, collector_headers):
    response = await client.post("/api/v1/tickets", json={}, headers=collector_headers)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_viewer_cannot_create_ticket(client, viewer_headers):
    response = await client.post(
        "/api/v1/tickets", json={"customer_id": "C001"}, headers=viewer_headers
    )
    assert response.status_code == 403


async def test_collector_cannot_delete_ticket(client, collector_headers):
    response = await client.delete(f"/api/v1/tickets/{uuid.uuid4()}", headers=collector_headers)
    assert response.status_code == 403


async def test_change_status(client, collector_headers):
    ticket = _ticket()

    async def _change(db, t, new_status, user_id):
        t.status = new_status

    with patch.object(ticket_service, "get_ticket", AsyncMock(return_value=ticket)), \
            patch.object(ticket_service, "change_ticket_status", AsyncMock(side_effect=_change)), \
            patch.object(ticket_service, "ticket_invoice_refs", AsyncMock(return_value=[])):
        response = await client.patch(
            f"/api/v1/tickets/{ticket.id}/status",
            json={"status": "promised"},
            headers=collector_headers,
        )

    assert response.status_code == 200
    assert response.json()["status"] == "promised"
