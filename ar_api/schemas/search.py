from typing import List, Optional
from pydantic import BaseModel

from ar_api.schemas.invoice import InvoiceResponse


class CustomerHit(BaseModel):
    customer_id: str
    customer_name: Optional[str] = None
    balance: float = 0


class PaymentHit(BaseModel):
    reference_number: str
    type: Optional[str] = None
    customer_id: Optional[str] = None
    payment_amount: float = 0
    application_date: Optional[str] = None


class GlobalSearchResponse(BaseModel):
    term: str
    customers: List[CustomerHit] = []
    invoices: List[InvoiceResponse] = []
    payments: List[PaymentHit] = []
