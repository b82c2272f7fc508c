from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ar_api.middleware.auth import get_current_user
from ar_api.middleware.authorization import require_roles, READ_ROLES
from ar_api.middleware.rls import get_db_with_user
from ar_api.routes.invoices import invoice_to_response
from ar_api.schemas.common import iso
from ar_api.schemas.search import CustomerHit, GlobalSearchResponse, PaymentHit
from ar_api.services.search_service import global_search

router = APIRouter()


@router.get("", response_model=GlobalSearchResponse)
async def search(
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(10, ge=1, le=50),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*READ_ROLES)),
    db: AsyncSession = Depends(get_db_with_user),
):
    hits = await global_search(db, q, limit=limit)
    return GlobalSearchResponse(
        term=q,
        customers=[
            CustomerHit(
                customer_id=c.customer_id,
                customer_name=c.customer_name,
                balance=float(c.balance or 0),
            )
            for c in hits["customers"]
        ],
        invoices=[invoice_to_response(i) for i in hits["invoices"]],
        payments=[
            PaymentHit(
                reference_number=p.reference_number,
                type=p.type,
                customer_id=p.customer_id,
                payment_amount=float(p.payment_amount or 0),
                application_date=iso(p.application_date),
            )
            for p in hits["payments"]
        ],
    )
