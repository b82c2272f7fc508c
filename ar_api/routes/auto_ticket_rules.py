from datetime import datetime
import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.middleware.auth import get_current_user
from ar_api.middleware.authorization import require_roles, MANAGER_ROLES
from ar_api.middleware.rls import get_db_with_user
from ar_api.models.auto_ticket_rule import AutoTicketRule
from ar_api.models.user import UserProfile
from ar_api.schemas.common import iso
from ar_api.schemas.rule import (
    AutoTicketRuleCreate,
    AutoTicketRuleResponse,
    AutoTicketRuleUpdate,
)
from ar_api.services.activity_service import log_user_activity
from ar_api.services.auto_ticket_rules_service import apply_rule

logger = structlog.get_logger()
router = APIRouter()


def _to_response(r: AutoTicketRule) -> AutoTicketRuleResponse:
    return AutoTicketRuleResponse(
        id=str(r.id),
        customer_id=r.customer_id,
        condition_logic=r.condition_logic,
        min_days_old=r.min_days_old,
        max_days_old=r.max_days_old,
        check_payment_within_days_min=r.check_payment_within_days_min,
        check_payment_within_days_max=r.check_payment_within_days_max,
        assigned_collector_id=str(r.assigned_collector_id),
        created_by=str(r.created_by) if r.created_by else None,
        active=r.active,
        last_run_at=iso(r.last_run_at),
        created_at=iso(r.created_at) or "",
    )


async def _get_rule(db: AsyncSession, rule_id) -> AutoTicketRule:
    rule = await db.get(AutoTicketRule, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


async def _check_collector(db: AsyncSession, collector_id: str) -> uuid.UUID:
    try:
        collector_uuid = uuid.UUID(collector_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid collector id")
    if not await db.get(UserProfile, collector_uuid):
        raise HTTPException(status_code=404, detail="Collector not found")
    return collector_uuid


@router.get("", response_model=List[AutoTicketRuleResponse])
async def list_rules(
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    result = await db.execute(select(AutoTicketRule).order_by(AutoTicketRule.customer_id))
    return [_to_response(r) for r in result.scalars().all()]


@router.post("", response_model=AutoTicketRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    body: AutoTicketRuleCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    data = body.model_dump()
    data["assigned_collector_id"] = await _check_collector(db, body.assigned_collector_id)
    rule = AutoTicketRule(**data, created_by=current_user["user_id"])
    db.add(rule)
    try:
        async with db.begin_nested():
            await db.flush()
    except IntegrityError:
        raise HTTPException(
            status_code=409, detail=f"A rule already exists for customer {body.customer_id}"
        )

    await log_user_activity(
        db,
        user_id=current_user["user_id"],
        action_type="auto_ticket_rule_created",
        entity_type="auto_ticket_rule",
        entity_id=rule.id,
        details={"customer_id": rule.customer_id, "logic": rule.condition_logic},
    )
    return _to_response(rule)


@router.put("/{rule_id}", response_model=AutoTicketRuleResponse)
async def update_rule(
    rule_id: uuid.UUID,
    body: AutoTicketRuleUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    rule = await _get_rule(db, rule_id)
    data = body.model_dump()
    data["assigned_collector_id"] = await _check_collector(db, body.assigned_collector_id)
    for field, value in data.items():
        setattr(rule, field, value)
    await db.flush()
    return _to_response(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    rule = await _get_rule(db, rule_id)
    await db.delete(rule)
    await db.flush()
    await log_user_activity(
        db,
        user_id=current_user["user_id"],
        action_type="auto_ticket_rule_deleted",
        entity_type="auto_ticket_rule",
        entity_id=rule_id,
        details={"customer_id": rule.customer_id},
    )


@router.post("/{rule_id}/run")
async def run_rule(
    rule_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    """Evaluate one rule now instead of waiting for the nightly job."""
    rule = await _get_rule(db, rule_id)
    if not rule.active:
        raise HTTPException(status_code=409, detail="Rule is inactive")
    return await apply_rule(db, rule, datetime.utcnow().date())
