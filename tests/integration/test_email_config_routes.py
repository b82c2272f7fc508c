"""
Email configuration endpoints against the mocked session.
"""

import uuid
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.exc import IntegrityError

from ar_api.models.activity_log import UserActivityLog
from ar_api.models.email import EmailCustomer, EmailCustomerAssignment, EmailFormula


def _added(mock_db, model):
    return [c.args[0] for c in mock_db.add.call_args_list if isinstance(c.args[0], model)]


async def test_collector_cannot_manage_email(client, collector_headers):
    response = await client.get("/api/v1/email/formulas", headers=collector_headers)
    assert response.status_code == 403


async def test_create_formula(client, mock_db, admin_headers):
    body = {
        "name": "Monthly nudge",
        "schedule": [{"day": 1, "times": ["09:00"]}, {"day": 5, "times": ["09:00", "14:30:00"]}],
    }
    response = await client.post("/api/v1/email/formulas", json=body, headers=admin_headers)

    assert response.status_code == 201
    assert response.json()["name"] == "Monthly nudge"
    formula = _added(mock_db, EmailFormula)[0]
    assert formula.schedule[1] == {"day": 5, "times": ["09:00", "14:30:00"]}
    assert _added(mock_db, UserActivityLog)[0].action_type == "email_formula_created"


async def test_formula_rejects_bad_slot(client, admin_headers):
    body = {"name": "Broken", "schedule": [{"day": 32, "times": ["25:00"]}]}
    response = await client.post("/api/v1/email/formulas", json=body, headers=admin_headers)
    assert response.status_code == 422


async def test_duplicate_recipient_is_409(client, mock_db, admin_headers):
    mock_db.begin_nested = MagicMock()
    mock_db.begin_nested.return_value.__aenter__ = AsyncMock()
    mock_db.begin_nested.return_value.__aexit__ = AsyncMock(return_value=False)
    mock_db.flush.side_effect = IntegrityError("INSERT", {}, Exception("duplicate key"))

    response = await client.post(
        "/api/v1/email/customers",
        json={"name": "Acme AP", "email": "AP@Acme.test"},
        headers=admin_headers,
    )

    assert response.status_code == 409
    assert _added(mock_db, EmailCustomer)[0].email == "ap@acme.test"


async def test_assignment_requires_existing_customer(client, mock_db, admin_headers):
    mock_db.get = AsyncMock(return_value=None)
    body = {"customer_id": str(uuid.uuid4()), "timezone": "America/Chicago"}

    response = await client.post("/api/v1/email/assignments", json=body, headers=admin_headers)

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Customer not found"


async def test_assignment_rejects_unknown_timezone(client, admin_headers):
    body = {"customer_id": str(uuid.uuid4()), "timezone": "Mars/Olympus"}
    response = await client.post("/api/v1/email/assignments", json=body, headers=admin_headers)
    assert response.status_code == 422


async def test_create_assignment(client, mock_db, admin_headers):
    customer_id, formula_id = uuid.uuid4(), uuid.uuid4()
    mock_db.get = AsyncMock(return_value=SimpleNamespace(id=customer_id))
    body = {
        "customer_id": str(customer_id),
        "formula_id": str(formula_id),
        "start_day_of_month": 10,
        "timezone": "America/Chicago",
    }

    response = await client.post("/api/v1/email/assignments", json=body, headers=admin_headers)

    assert response.status_code == 201
    assignment = _added(mock_db, EmailCustomerAssignment)[0]
    assert assignment.customer_id == customer_id
    assert assignment.formula_id == formula_id
    assert assignment.template_id is None
    assert response.json()["start_day_of_month"] == 10


async def test_delete_template(client, mock_db, admin_headers):
    template = SimpleNamespace(id=uuid.uuid4(), name="T", created_at=datetime(2026, 3, 1))
    mock_db.get = AsyncMock(return_value=template)

    response = await client.delete(f"/api/v1/email/templates/{template.id}", headers=admin_headers)

    assert response.status_code == 204
    mock_db.delete.assert_awaited_once_with(template)
