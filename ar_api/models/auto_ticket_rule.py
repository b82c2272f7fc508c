import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    Boolean,
    DateTime,
    Integer,
    ForeignKey,
    CheckConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from ar_api.database import Base

CONDITION_LOGIC = ("invoice_only", "payment_only", "both_and", "both_or")


class AutoTicketRule(Base):
    __tablename__ = "auto_ticket_rules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    condition_logic: Mapped[str] = mapped_column(
        String(20), nullable=False, default="invoice_only"
    )
    min_days_old: Mapped[Optional[int]] = mapped_column(Integer)
    max_days_old: Mapped[Optional[int]] = mapped_column(Integer)
    check_payment_within_days_min: Mapped[Optional[int]] = mapped_column(Integer)
    check_payment_within_days_max: Mapped[Optional[int]] = mapped_column(Integer)
    assigned_collector_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("user_profiles.id", ondelete="SET NULL")
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "condition_logic IN ('invoice_only','payment_only','both_and','both_or')",
            name="auto_ticket_rules_condition_logic_check",
        ),
        CheckConstraint(
            "min_days_old IS NULL OR max_days_old IS NULL OR min_days_old <= max_days_old",
            name="auto_ticket_rules_day_range_check",
        ),
    )
