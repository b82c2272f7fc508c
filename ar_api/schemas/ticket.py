from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field


class TicketCreate(BaseModel):
    customer_id: str = Field(..., min_length=1, max_length=50)
    customer_name: Optional[str] = None
    assigned_collector_id: Optional[str] = None
    invoice_reference_numbers: List[str] = Field(default_factory=list)
    priority: str = "medium"
    ticket_type: Optional[str] = None
    status: str = "open"
    notes: Optional[str] = None


class TicketAssign(BaseModel):
    collector_id: str


class TicketStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1, max_length=50)


class TicketPriorityUpdate(BaseModel):
    priority: str


class TicketPromiseUpdate(BaseModel):
    promise_date: Optional[date] = None


class TicketInvoicesAdd(BaseModel):
    invoice_reference_numbers: List[str] = Field(..., min_length=1)


class TicketMergeRequest(BaseModel):
    source_ticket_ids: List[str] = Field(..., min_length=1)
    invoice_reference_numbers: Optional[List[str]] = None
    notes: Optional[str] = None


class TicketNoteCreate(BaseModel):
    note_text: str = Field(..., min_length=1, max_length=10000)


class TicketResponse(BaseModel):
    id: str
    ticket_number: str
    customer_id: str
    customer_name: Optional[str] = None
    assigned_collector_id: Optional[str] = None
    assigned_at: Optional[str] = None
    assigned_by: Optional[str] = None
    status: str
    priority: str
    ticket_type: Optional[str] = None
    promise_date: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    resolved_at: Optional[str] = None
    invoice_reference_numbers: List[str] = []
    created_at: str
    updated_at: str


class TicketNoteResponse(BaseModel):
    id: str
    ticket_id: str
    note_text: str
    created_by: Optional[str] = None
    created_at: str


class TicketActivityResponse(BaseModel):
    id: str
    ticket_id: str
    activity_type: str
    description: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    metadata: Optional[dict] = None
    created_by: Optional[str] = None
    created_at: str


class TicketMergeEventResponse(BaseModel):
    merge_id: str
    merged_at: Optional[str] = None
    merged_by_name: Optional[str] = None
    merged_by_email: Optional[str] = None
    source_ticket_numbers: List[str] = []
    invoice_count: int = 0
    invoice_reference_numbers: List[str] = []
    notes: Optional[str] = None


class TicketOptionResponse(BaseModel):
    value: str
    label: str
    sort_order: int
