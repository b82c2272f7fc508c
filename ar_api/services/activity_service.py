"""Activity logging service: user, ticket and invoice audit trails.

All writers use session.flush(); the caller owns the transaction.
"""

from typing import Optional, Any
from datetime import datetime
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from ar_api.models.activity_log import UserActivityLog
from ar_api.models.invoice import InvoiceActivityLog
from ar_api.models.ticket import TicketActivityLog

logger = structlog.get_logger()


def _to_uuid(value: Any, field_name: str, required: bool = False) -> Optional[uuid.UUID]:
    if value is None:
        if required:
            raise ValueError(f"{field_name} is required")
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        if required:
            raise ValueError(f"{field_name} must be a valid UUID")
        logger.warning("activity_invalid_uuid", field=field_name, value=str(value))
        return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


async def log_user_activity(
    session: AsyncSession,
    user_id: Any,
    action_type: str,
    entity_type: str,
    entity_id: Any = None,
    details: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> UserActivityLog:
    entry = UserActivityLog(
        user_id=_to_uuid(user_id, "user_id"),
        action_type=action_type,
        entity_type=entity_type,
        entity_id=_as_text(entity_id),
        details=details or {},
        ip_address=ip_address,
        created_at=datetime.utcnow(),
    )
    session.add(entry)
    await session.flush()

    logger.info(
        "user_activity_logged",
        action_type=action_type,
        entity_type=entity_type,
        entity_id=_as_text(entity_id),
        user_id=_as_text(user_id),
    )
    return entry


async def log_ticket_activity(
    session: AsyncSession,
    ticket_id: Any,
    activity_type: str,
    description: str,
    created_by: Any = None,
    old_value: Any = None,
    new_value: Any = None,
    metadata: Optional[dict] = None,
) -> TicketActivityLog:
    entry = TicketActivityLog(
        ticket_id=_to_uuid(ticket_id, "ticket_id", required=True),
        activity_type=activity_type,
        description=description,
        old_value=_as_text(old_value),
        new_value=_as_text(new_value),
        extra_metadata=metadata or {},
        created_by=_to_uuid(created_by, "created_by"),
        created_at=datetime.utcnow(),
    )
    session.add(entry)
    await session.flush()

    logger.info(
        "ticket_activity_logged",
        ticket_id=_as_text(ticket_id),
        activity_type=activity_type,
    )
    return entry


async def log_invoice_activity(
    session: AsyncSession,
    invoice_id: Any,
    activity_type: str,
    description: str,
    user_id: Any = None,
    old_value: Any = None,
    new_value: Any = None,
) -> InvoiceActivityLog:
    entry = InvoiceActivityLog(
        invoice_id=_to_uuid(invoice_id, "invoice_id", required=True),
        user_id=_to_uuid(user_id, "user_id"),
        activity_type=activity_type,
        old_value=_as_text(old_value),
        new_value=_as_text(new_value),
        description=description,
        created_at=datetime.utcnow(),
    )
    session.add(entry)
    await session.flush()
    return entry
