import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Text, CheckConstraint, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ar_api.database import Base

# Roles accumulated over the life of the product; the check constraint and
# this tuple must move together.
VALID_ROLES = (
    "admin",
    "manager",
    "collector",
    "secretary",
    "developer",
    "viewer",
    "user",
    "customer",
)

ACCOUNT_STATUSES = ("pending", "approved", "rejected")


class UserProfile(Base):
    __tablename__ = "user_profiles"

    # Same id as the hosted auth user row
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(200))
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="user")
    account_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="approved"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    permissions: Mapped[dict] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin','manager','collector','secretary','developer','viewer','user','customer')",
            name="user_profiles_role_check",
        ),
        CheckConstraint(
            "account_status IN ('pending','approved','rejected')",
            name="user_profiles_account_status_check",
        ),
        Index("idx_user_profiles_role", "role"),
    )


class PendingUser(Base):
    __tablename__ = "pending_users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    notes: Mapped[Optional[str]] = mapped_column(Text)
    requested_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','approved','rejected')",
            name="pending_users_status_check",
        ),
        Index("idx_pending_users_status", "status"),
    )
