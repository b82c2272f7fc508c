"""add_email_event_tracking

Revision ID: e6a1c9d3f205
Revises: c2e8b7a4f053
Create Date: 2026-03-12 09:14:51.660731+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'e6a1c9d3f205'
down_revision: Union[str, None] = 'c2e8b7a4f053'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('email_logs', sa.Column('delivered_at', sa.DateTime(), nullable=True))
    op.add_column('email_logs', sa.Column('opened_at', sa.DateTime(), nullable=True))
    op.add_column('email_logs', sa.Column('open_count', sa.Integer(), server_default='0', nullable=False))
    op.add_column('email_logs', sa.Column('clicked_at', sa.DateTime(), nullable=True))
    op.add_column('email_logs', sa.Column('click_count', sa.Integer(), server_default='0', nullable=False))
    op.add_column('email_logs', sa.Column('bounced_at', sa.DateTime(), nullable=True))
    op.add_column('email_logs', sa.Column('bounce_reason', sa.Text(), nullable=True))

    op.drop_constraint('email_logs_status_check', 'email_logs', type_='check')
    op.create_check_constraint(
        'email_logs_status_check',
        'email_logs',
        "status IN ('pending','sent','failed','delivered','opened','clicked','bounced')",
    )
    # SendGrid events are matched on the X-Message-Id captured at send time
    op.create_index('idx_email_logs_provider_message_id', 'email_logs', ['provider_message_id'])


def downgrade() -> None:
    op.drop_index('idx_email_logs_provider_message_id', table_name='email_logs')
    op.execute(
        "UPDATE email_logs SET status = 'sent' "
        "WHERE status IN ('delivered','opened','clicked','bounced')"
    )
    op.drop_constraint('email_logs_status_check', 'email_logs', type_='check')
    op.create_check_constraint(
        'email_logs_status_check', 'email_logs', "status IN ('pending','sent','failed')"
    )
    for column in (
        'bounce_reason', 'bounced_at', 'click_count', 'clicked_at',
        'open_count', 'opened_at', 'delivered_at',
    ):
        op.drop_column('email_logs', column)
