from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class ReminderCreate(BaseModel):
    invoice_reference_number: str
    reminder_date: datetime
    reminder_message: Optional[str] = Field(None, max_length=2000)
    send_email: bool = False


class ReminderResponse(BaseModel):
    id: str
    invoice_id: str
    invoice_reference_number: str
    user_id: str
    reminder_date: str
    reminder_message: Optional[str] = None
    send_email: bool
    is_triggered: bool
    triggered_at: Optional[str] = None
    created_at: str


class NotificationResponse(BaseModel):
    id: str
    reminder_id: Optional[str] = None
    invoice_id: Optional[str] = None
    title: str
    message: str
    is_read: bool
    read_at: Optional[str] = None
    created_at: str
