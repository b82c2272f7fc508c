from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field


class InvoiceResponse(BaseModel):
    id: str
    reference_number: str
    type: Optional[str] = None
    status: Optional[str] = None
    date: Optional[str] = None
    due_date: Optional[str] = None
    customer: Optional[str] = None
    customer_name: Optional[str] = None
    customer_order: Optional[str] = None
    description: Optional[str] = None
    terms: Optional[str] = None
    amount: float
    balance: float
    color_status: Optional[str] = None
    last_modified_by_color: Optional[str] = None
    promise_date: Optional[str] = None
    promise_by: Optional[str] = None
    promise_broken: bool = False
    last_touched_date: Optional[str] = None
    synced_at: Optional[str] = None

    model_config = {"from_attributes": True}


class ColorStatusUpdate(BaseModel):
    color_status: Optional[str] = Field(None, max_length=50)


class PromiseDateUpdate(BaseModel):
    promise_date: Optional[date] = None
    color_status: Optional[str] = Field(
        None, description="Optionally set alongside the promise, usually 'green'"
    )


class ColorStatusOptionResponse(BaseModel):
    id: str
    status_name: str
    display_name: str
    color_class: str
    sort_order: int
    is_active: bool
    is_system: bool

    model_config = {"from_attributes": True}


class MemoCreate(BaseModel):
    memo_text: str = Field(..., min_length=1, max_length=10000)


class MemoAttachmentResponse(BaseModel):
    id: str
    file_name: str
    file_type: str
    file_size: int
    url: Optional[str] = None
    created_at: str


class MemoResponse(BaseModel):
    id: str
    invoice_id: str
    invoice_reference: str
    user_id: str
    memo_text: str
    attachments: List[MemoAttachmentResponse] = []
    created_at: str
    updated_at: str


class InvoiceActivityResponse(BaseModel):
    id: str
    activity_type: str
    description: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    user_id: Optional[str] = None
    created_at: str
