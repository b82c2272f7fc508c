"""add_email_dedup_and_retention_indexes

Revision ID: c2e8b7a4f053
Revises: a93d5f1b6e24
Create Date: 2026-03-09 16:47:12.904385+00:00

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = 'c2e8b7a4f053'
down_revision: Union[str, None] = 'a93d5f1b6e24'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # One email_logs row per scheduled slot; the scheduler claims slots with
    # INSERT ... ON CONFLICT (dedup_key) DO NOTHING
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_email_logs_dedup_key "
        "ON email_logs(dedup_key)"
    )
    # Batched retention deletes scan by age
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_sync_change_logs_created "
        "ON sync_change_logs(created_at)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_invoice_reminders_due "
        "ON invoice_reminders(reminder_date) WHERE is_triggered = false"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_invoice_reminders_due")
    op.execute("DROP INDEX IF EXISTS idx_sync_change_logs_created")
    op.execute("DROP INDEX IF EXISTS uq_email_logs_dedup_key")
