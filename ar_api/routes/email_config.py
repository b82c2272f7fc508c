"""
Scheduled-email configuration: formulas, templates, recipients and the
assignments tying them together. Managers only.
"""

from datetime import timezone
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.middleware.auth import get_current_user
from ar_api.middleware.authorization import require_roles, MANAGER_ROLES
from ar_api.middleware.rls import get_db_with_user
from ar_api.models.email import (
    EmailCustomer,
    EmailCustomerAssignment,
    EmailFormula,
    EmailTemplate,
)
from ar_api.schemas.common import iso
from ar_api.schemas.email import (
    EmailAssignmentCreate,
    EmailAssignmentResponse,
    EmailCustomerCreate,
    EmailCustomerResponse,
    EmailFormulaCreate,
    EmailFormulaResponse,
    EmailTemplateCreate,
    EmailTemplateResponse,
)
from ar_api.services.activity_service import log_user_activity

logger = structlog.get_logger()
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _formula_response(f: EmailFormula) -> EmailFormulaResponse:
    return EmailFormulaResponse(
        id=str(f.id),
        name=f.name,
        description=f.description,
        schedule=f.schedule or [],
        created_at=iso(f.created_at) or "",
        updated_at=iso(f.updated_at),
    )


def _template_response(t: EmailTemplate) -> EmailTemplateResponse:
    return EmailTemplateResponse(
        id=str(t.id),
        name=t.name,
        subject=t.subject,
        body=t.body,
        created_at=iso(t.created_at) or "",
        updated_at=iso(t.updated_at),
    )


def _customer_response(c: EmailCustomer) -> EmailCustomerResponse:
    return EmailCustomerResponse(
        id=str(c.id),
        name=c.name,
        email=c.email,
        acumatica_customer_id=c.acumatica_customer_id,
        is_active=c.is_active,
        responded_this_month=c.responded_this_month,
        postpone_until=iso(c.postpone_until),
        created_at=iso(c.created_at) or "",
    )


def _assignment_response(a: EmailCustomerAssignment) -> EmailAssignmentResponse:
    return EmailAssignmentResponse(
        id=str(a.id),
        customer_id=str(a.customer_id),
        formula_id=str(a.formula_id) if a.formula_id else None,
        template_id=str(a.template_id) if a.template_id else None,
        start_day_of_month=a.start_day_of_month,
        timezone=a.timezone,
        is_active=a.is_active,
        created_at=iso(a.created_at) or "",
    )


async def _get_or_404(db: AsyncSession, model, row_id, label: str):
    row = await db.get(model, row_id)
    if not row:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return row


async def _resolve_ref(db: AsyncSession, model, value: Optional[str], label: str):
    if value is None:
        return None
    try:
        ref_id = uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label.lower()} id")
    await _get_or_404(db, model, ref_id, label)
    return ref_id


def _customer_values(body: EmailCustomerCreate) -> dict:
    data = body.model_dump()
    data["email"] = data["email"].lower()
    postpone = data["postpone_until"]
    if postpone is not None and postpone.tzinfo is not None:
        data["postpone_until"] = postpone.astimezone(timezone.utc).replace(tzinfo=None)
    return data


async def _assignment_values(db: AsyncSession, body: EmailAssignmentCreate) -> dict:
    data = body.model_dump()
    data["customer_id"] = await _resolve_ref(db, EmailCustomer, body.customer_id, "Customer")
    data["formula_id"] = await _resolve_ref(db, EmailFormula, body.formula_id, "Formula")
    data["template_id"] = await _resolve_ref(db, EmailTemplate, body.template_id, "Template")
    return data


async def _log(db: AsyncSession, current_user: dict, action: str, entity_type: str, entity_id, details=None):
    await log_user_activity(
        db,
        user_id=current_user["user_id"],
        action_type=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details or {},
    )


# ---------------------------------------------------------------------------
# Formulas
# ---------------------------------------------------------------------------


@router.get("/formulas", response_model=List[EmailFormulaResponse])
async def list_formulas(
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    result = await db.execute(select(EmailFormula).order_by(EmailFormula.name))
    return [_formula_response(f) for f in result.scalars().all()]


@router.post("/formulas", response_model=EmailFormulaResponse, status_code=status.HTTP_201_CREATED)
async def create_formula(
    body: EmailFormulaCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    formula = EmailFormula(**body.model_dump())
    db.add(formula)
    await db.flush()
    await _log(db, current_user, "email_formula_created", "email_formula", formula.id, {"name": formula.name})
    return _formula_response(formula)


@router.put("/formulas/{formula_id}", response_model=EmailFormulaResponse)
async def update_formula(
    formula_id: uuid.UUID,
    body: EmailFormulaCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    formula = await _get_or_404(db, EmailFormula, formula_id, "Formula")
    for field, value in body.model_dump().items():
        setattr(formula, field, value)
    await db.flush()
    await _log(db, current_user, "email_formula_updated", "email_formula", formula_id)
    return _formula_response(formula)


@router.delete("/formulas/{formula_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_formula(
    formula_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    formula = await _get_or_404(db, EmailFormula, formula_id, "Formula")
    await db.delete(formula)
    await db.flush()
    await _log(db, current_user, "email_formula_deleted", "email_formula", formula_id)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


@router.get("/templates", response_model=List[EmailTemplateResponse])
async def list_templates(
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    result = await db.execute(select(EmailTemplate).order_by(EmailTemplate.name))
    return [_template_response(t) for t in result.scalars().all()]


@router.post("/templates", response_model=EmailTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    body: EmailTemplateCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    template = EmailTemplate(**body.model_dump())
    db.add(template)
    await db.flush()
    await _log(db, current_user, "email_template_created", "email_template", template.id, {"name": template.name})
    return _template_response(template)


@router.put("/templates/{template_id}", response_model=EmailTemplateResponse)
async def update_template(
    template_id: uuid.UUID,
    body: EmailTemplateCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    template = await _get_or_404(db, EmailTemplate, template_id, "Template")
    for field, value in body.model_dump().items():
        setattr(template, field, value)
    await db.flush()
    await _log(db, current_user, "email_template_updated", "email_template", template_id)
    return _template_response(template)


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    template = await _get_or_404(db, EmailTemplate, template_id, "Template")
    await db.delete(template)
    await db.flush()
    await _log(db, current_user, "email_template_deleted", "email_template", template_id)


# ---------------------------------------------------------------------------
# Recipients
# ---------------------------------------------------------------------------


@router.get("/customers", response_model=List[EmailCustomerResponse])
async def list_customers(
    active_only: bool = False,
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    q = select(EmailCustomer).order_by(EmailCustomer.name)
    if active_only:
        q = q.where(EmailCustomer.is_active.is_(True))
    result = await db.execute(q)
    return [_customer_response(c) for c in result.scalars().all()]


@router.post("/customers", response_model=EmailCustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    body: EmailCustomerCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    customer = EmailCustomer(**_customer_values(body))
    db.add(customer)
    try:
        async with db.begin_nested():
            await db.flush()
    except IntegrityError:
        raise HTTPException(status_code=409, detail=f"Recipient {body.email} already exists")
    await _log(db, current_user, "email_customer_created", "email_customer", customer.id, {"email": customer.email})
    return _customer_response(customer)


@router.put("/customers/{customer_id}", response_model=EmailCustomerResponse)
async def update_customer(
    customer_id: uuid.UUID,
    body: EmailCustomerCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    customer = await _get_or_404(db, EmailCustomer, customer_id, "Customer")
    for field, value in _customer_values(body).items():
        setattr(customer, field, value)
    try:
        async with db.begin_nested():
            await db.flush()
    except IntegrityError:
        raise HTTPException(status_code=409, detail=f"Recipient {body.email} already exists")
    await _log(db, current_user, "email_customer_updated", "email_customer", customer_id)
    return _customer_response(customer)


@router.delete("/customers/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_customer(
    customer_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    customer = await _get_or_404(db, EmailCustomer, customer_id, "Customer")
    await db.delete(customer)
    await db.flush()
    await _log(db, current_user, "email_customer_deleted", "email_customer", customer_id)


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


@router.get("/assignments", response_model=List[EmailAssignmentResponse])
async def list_assignments(
    customer_id: Optional[uuid.UUID] = None,
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    q = select(EmailCustomerAssignment).order_by(EmailCustomerAssignment.created_at)
    if customer_id:
        q = q.where(EmailCustomerAssignment.customer_id == customer_id)
    result = await db.execute(q)
    return [_assignment_response(a) for a in result.scalars().all()]


@router.post("/assignments", response_model=EmailAssignmentResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    body: EmailAssignmentCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    assignment = EmailCustomerAssignment(**await _assignment_values(db, body))
    db.add(assignment)
    await db.flush()
    await _log(
        db, current_user, "email_assignment_created", "email_assignment", assignment.id,
        {"customer_id": body.customer_id},
    )
    return _assignment_response(assignment)


@router.put("/assignments/{assignment_id}", response_model=EmailAssignmentResponse)
async def update_assignment(
    assignment_id: uuid.UUID,
    body: EmailAssignmentCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    assignment = await _get_or_404(db, EmailCustomerAssignment, assignment_id, "Assignment")
    for field, value in (await _assignment_values(db, body)).items():
        setattr(assignment, field, value)
    await db.flush()
    await _log(db, current_user, "email_assignment_updated", "email_assignment", assignment_id)
    return _assignment_response(assignment)


@router.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assignment(
    assignment_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    assignment = await _get_or_404(db, EmailCustomerAssignment, assignment_id, "Assignment")
    await db.delete(assignment)
    await db.flush()
    await _log(db, current_user, "email_assignment_deleted", "email_assignment", assignment_id)
