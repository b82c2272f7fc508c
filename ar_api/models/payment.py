import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Numeric,
    Text,
    ForeignKey,
    UniqueConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ar_api.database import Base


class AcumaticaPayment(Base):
    __tablename__ = "acumatica_payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    reference_number: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[Optional[str]] = mapped_column(String(50))
    customer_id: Mapped[Optional[str]] = mapped_column(String(50))
    application_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0)
    available_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    payment_ref: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text)
    last_modified_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime)
    raw_data: Mapped[Optional[dict]] = mapped_column(JSONB)
    synced_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("reference_number", "type", name="uq_payment_reference_type"),
        Index("idx_payments_customer_date", "customer_id", "application_date"),
    )


class PaymentInvoiceApplication(Base):
    __tablename__ = "payment_invoice_applications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    payment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("acumatica_payments.id", ondelete="CASCADE"),
        nullable=False,
    )
    payment_reference_number: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_reference_number: Mapped[str] = mapped_column(String(50), nullable=False)
    customer_id: Mapped[Optional[str]] = mapped_column(String(50))
    doc_type: Mapped[Optional[str]] = mapped_column(String(50))
    application_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0)
    balance: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2))
    cash_discount_taken: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "payment_id",
            "invoice_reference_number",
            name="uq_payment_invoice_application",
        ),
        Index("idx_payment_apps_invoice_ref", "invoice_reference_number"),
    )
