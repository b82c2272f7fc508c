from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, EmailStr, Field, field_validator


class ScheduleSlot(BaseModel):
    day: int = Field(..., ge=1, le=31)
    times: List[str] = Field(..., min_length=1)

    @field_validator("times")
    @classmethod
    def check_times(cls, v):
        for t in v:
            parts = t.split(":")
            if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
                raise ValueError(f"Invalid send time '{t}', expected HH:MM")
            hour, minute = int(parts[0]), int(parts[1])
            if not (0 <= hour < 24 and 0 <= minute < 60):
                raise ValueError(f"Invalid send time '{t}'")
        return v


class EmailFormulaCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    schedule: List[ScheduleSlot] = Field(default_factory=list)


class EmailFormulaResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    schedule: list
    created_at: str
    updated_at: Optional[str] = None


class EmailTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    subject: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)


class EmailTemplateResponse(BaseModel):
    id: str
    name: str
    subject: str
    body: str
    created_at: str
    updated_at: Optional[str] = None


class EmailCustomerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    acumatica_customer_id: Optional[str] = Field(None, max_length=50)
    is_active: bool = True
    responded_this_month: bool = False
    postpone_until: Optional[datetime] = None


class EmailCustomerResponse(BaseModel):
    id: str
    name: str
    email: str
    acumatica_customer_id: Optional[str] = None
    is_active: bool
    responded_this_month: bool
    postpone_until: Optional[str] = None
    created_at: str


class EmailAssignmentCreate(BaseModel):
    customer_id: str
    formula_id: Optional[str] = None
    template_id: Optional[str] = None
    start_day_of_month: int = Field(1, ge=1, le=31)
    timezone: str = "America/New_York"
    is_active: bool = True

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone '{v}'")
        return v


class EmailAssignmentResponse(BaseModel):
    id: str
    customer_id: str
    formula_id: Optional[str] = None
    template_id: Optional[str] = None
    start_day_of_month: int
    timezone: str
    is_active: bool
    created_at: str
