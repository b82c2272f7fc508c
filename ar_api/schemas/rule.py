from typing import Optional
from pydantic import BaseModel, Field, model_validator


class AutoTicketRuleBase(BaseModel):
    condition_logic: str = Field("invoice_only", pattern=r"^(invoice_only|payment_only|both_and|both_or)$")
    min_days_old: Optional[int] = Field(None, ge=0)
    max_days_old: Optional[int] = Field(None, ge=0)
    check_payment_within_days_min: Optional[int] = Field(None, ge=0)
    check_payment_within_days_max: Optional[int] = Field(None, ge=0)
    assigned_collector_id: str
    active: bool = True

    @model_validator(mode="after")
    def check_ranges(self):
        if (
            self.min_days_old is not None
            and self.max_days_old is not None
            and self.min_days_old > self.max_days_old
        ):
            raise ValueError("min_days_old must not exceed max_days_old")
        if (
            self.check_payment_within_days_min is not None
            and self.check_payment_within_days_max is not None
            and self.check_payment_within_days_min > self.check_payment_within_days_max
        ):
            raise ValueError("payment window min must not exceed max")
        return self


class AutoTicketRuleCreate(AutoTicketRuleBase):
    customer_id: str = Field(..., min_length=1, max_length=50)


class AutoTicketRuleUpdate(AutoTicketRuleBase):
    pass


class AutoTicketRuleResponse(BaseModel):
    id: str
    customer_id: str
    condition_logic: str
    min_days_old: Optional[int] = None
    max_days_old: Optional[int] = None
    check_payment_within_days_min: Optional[int] = None
    check_payment_within_days_max: Optional[int] = None
    assigned_collector_id: str
    created_by: Optional[str] = None
    active: bool
    last_run_at: Optional[str] = None
    created_at: str
