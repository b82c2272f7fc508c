import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    Boolean,
    DateTime,
    Integer,
    Text,
    ForeignKey,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ar_api.database import Base

SYNC_TYPES = ("customer", "invoice", "payment", "payment_application")
SYNC_ACTIONS = (
    "created",
    "updated",
    "closed",
    "reopened",
    "deleted",
    "status_changed",
    "paid",
    "partially_paid",
)
SYNC_SOURCES = (
    "webhook",
    "scheduled_sync",
    "manual_sync",
    "bulk_fetch",
    "batch_processing",
)


class SyncStatus(Base):
    __tablename__ = "sync_status"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    entity_type: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="idle")
    last_sync_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_sync_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_successful_sync: Mapped[Optional[datetime]] = mapped_column(DateTime)
    records_synced: Mapped[int] = mapped_column(Integer, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, default=0)
    records_created: Mapped[int] = mapped_column(Integer, default=0)
    errors: Mapped[list] = mapped_column(JSONB, default=list)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    sync_interval_minutes: Mapped[int] = mapped_column(Integer, default=5)
    lookback_minutes: Mapped[int] = mapped_column(Integer, default=2)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "entity_type IN ('customer','invoice','payment','all')",
            name="sync_status_entity_type_check",
        ),
        CheckConstraint(
            "status IN ('idle','running','completed','failed')",
            name="sync_status_status_check",
        ),
    )


class SyncChangeLog(Base):
    __tablename__ = "sync_change_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    sync_type: Mapped[str] = mapped_column(String(30), nullable=False)
    action_type: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100))
    entity_reference: Mapped[Optional[str]] = mapped_column(String(100))
    entity_name: Mapped[Optional[str]] = mapped_column(Text)
    change_summary: Mapped[Optional[str]] = mapped_column(Text)
    change_details: Mapped[Optional[dict]] = mapped_column(JSONB)
    sync_source: Mapped[str] = mapped_column(
        String(30), nullable=False, default="scheduled_sync"
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("user_profiles.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "sync_type IN ('customer','invoice','payment','payment_application')",
            name="sync_change_logs_sync_type_check",
        ),
        CheckConstraint(
            "action_type IN ('created','updated','closed','reopened','deleted',"
            "'status_changed','paid','partially_paid')",
            name="sync_change_logs_action_type_check",
        ),
        CheckConstraint(
            "sync_source IN ('webhook','scheduled_sync','manual_sync','bulk_fetch',"
            "'batch_processing')",
            name="sync_change_logs_sync_source_check",
        ),
        Index("idx_sync_change_logs_created", "created_at"),
        Index("idx_sync_change_logs_type_created", "sync_type", "created_at"),
    )


class AcumaticaSyncCredentials(Base):
    __tablename__ = "acumatica_sync_credentials"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    acumatica_url: Mapped[str] = mapped_column(Text, nullable=False)
    username: Mapped[str] = mapped_column(String(200), nullable=False)
    password: Mapped[str] = mapped_column(Text, nullable=False)
    company: Mapped[Optional[str]] = mapped_column(String(200))
    branch: Mapped[Optional[str]] = mapped_column(String(200))
    # Where scheduled dispatch posts sync requests, and the bearer token it sends
    service_base_url: Mapped[Optional[str]] = mapped_column(Text)
    service_token: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class CronJobLog(Base):
    __tablename__ = "cron_job_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text)
    details: Mapped[Optional[dict]] = mapped_column(JSONB)
    executed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_cron_job_logs_job_executed", "job_name", "executed_at"),
    )
