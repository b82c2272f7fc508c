import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer, Numeric, Text, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ar_api.database import Base


class AcumaticaCustomer(Base):
    __tablename__ = "acumatica_customers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(Text)
    customer_class: Mapped[Optional[str]] = mapped_column(String(100))
    customer_status: Mapped[Optional[str]] = mapped_column(String(50))
    terms: Mapped[Optional[str]] = mapped_column(String(50))
    balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0)
    credit_limit: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2))
    general_email: Mapped[Optional[str]] = mapped_column(String(255))
    billing_email: Mapped[Optional[str]] = mapped_column(String(255))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(50))
    # Days from invoice date before an open invoice is auto-marked red
    days_from_invoice_threshold: Mapped[int] = mapped_column(Integer, default=30)
    contact_status: Mapped[str] = mapped_column(String(20), default="untouched")
    exclude_from_analytics: Mapped[bool] = mapped_column(Boolean, default=False)
    last_modified_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime)
    raw_data: Mapped[Optional[dict]] = mapped_column(JSONB)
    synced_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_acumatica_customers_status", "customer_status"),
    )
