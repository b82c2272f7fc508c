"""initial_schema

Revision ID: 3f1a9c2d7b10
Revises:
Create Date: 2026-03-02 09:12:44.201533+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f1a9c2d7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id():
    return sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False)


def _created():
    return sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False)


def _updated():
    return sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False)


def _user_fk(column, ondelete='SET NULL'):
    return sa.ForeignKeyConstraint([column], ['user_profiles.id'], ondelete=ondelete)


def upgrade() -> None:
    # 1. users
    op.create_table('user_profiles',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('full_name', sa.String(length=200), nullable=True),
    sa.Column('role', sa.String(length=50), server_default='user', nullable=False),
    sa.Column('account_status', sa.String(length=20), server_default='approved', nullable=False),
    sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
    sa.Column('permissions', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=False),
    _created(),
    _updated(),
    sa.CheckConstraint(
        "role IN ('admin','manager','collector','secretary','developer','viewer','user','customer')",
        name='user_profiles_role_check',
    ),
    sa.CheckConstraint(
        "account_status IN ('pending','approved','rejected')",
        name='user_profiles_account_status_check',
    ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )
    op.create_index('idx_user_profiles_role', 'user_profiles', ['role'], unique=False)

    op.create_table('pending_users',
    _id(),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('full_name', sa.String(length=200), nullable=True),
    sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('requested_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('reviewed_by', sa.UUID(), nullable=True),
    sa.Column('reviewed_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint("status IN ('pending','approved','rejected')", name='pending_users_status_check'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )
    op.create_index('idx_pending_users_status', 'pending_users', ['status'], unique=False)

    # 2. option tables (FK targets for color/ticket status)
    op.create_table('invoice_color_status_options',
    _id(),
    sa.Column('status_name', sa.String(length=50), nullable=False),
    sa.Column('display_name', sa.String(length=100), nullable=False),
    sa.Column('color_class', sa.String(length=200), nullable=False),
    sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
    sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
    sa.Column('is_system', sa.Boolean(), server_default=sa.false(), nullable=False),
    _created(),
    _updated(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('status_name')
    )

    op.create_table('ticket_status_options',
    _id(),
    sa.Column('status_name', sa.String(length=50), nullable=False),
    sa.Column('display_name', sa.String(length=100), nullable=False),
    sa.Column('color_class', sa.String(length=200), nullable=True),
    sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
    sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
    sa.Column('is_system', sa.Boolean(), server_default=sa.false(), nullable=False),
    _created(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('status_name')
    )

    op.create_table('ticket_type_options',
    _id(),
    sa.Column('value', sa.String(length=50), nullable=False),
    sa.Column('label', sa.String(length=100), nullable=False),
    sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
    sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
    _created(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('value')
    )

    # 3. Acumatica mirror tables
    op.create_table('acumatica_customers',
    _id(),
    sa.Column('customer_id', sa.String(length=50), nullable=False),
    sa.Column('customer_name', sa.Text(), nullable=True),
    sa.Column('customer_class', sa.String(length=100), nullable=True),
    sa.Column('customer_status', sa.String(length=50), nullable=True),
    sa.Column('terms', sa.String(length=50), nullable=True),
    sa.Column('balance', sa.Numeric(precision=18, scale=2), server_default='0', nullable=False),
    sa.Column('credit_limit', sa.Numeric(precision=18, scale=2), nullable=True),
    sa.Column('general_email', sa.String(length=255), nullable=True),
    sa.Column('billing_email', sa.String(length=255), nullable=True),
    sa.Column('city', sa.String(length=100), nullable=True),
    sa.Column('country', sa.String(length=50), nullable=True),
    sa.Column('days_from_invoice_threshold', sa.Integer(), server_default='30', nullable=False),
    sa.Column('contact_status', sa.String(length=20), server_default='untouched', nullable=False),
    sa.Column('exclude_from_analytics', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('last_modified_datetime', sa.DateTime(), nullable=True),
    sa.Column('raw_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('synced_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    _created(),
    _updated(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('customer_id')
    )
    op.create_index('idx_acumatica_customers_status', 'acumatica_customers', ['customer_status'], unique=False)

    op.create_table('acumatica_invoices',
    _id(),
    sa.Column('reference_number', sa.String(length=6), nullable=False),
    sa.Column('type', sa.String(length=50), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=True),
    sa.Column('date', sa.Date(), nullable=True),
    sa.Column('due_date', sa.Date(), nullable=True),
    sa.Column('customer', sa.String(length=50), nullable=True),
    sa.Column('customer_name', sa.Text(), nullable=True),
    sa.Column('customer_order', sa.String(length=100), nullable=True),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('currency', sa.String(length=10), nullable=True),
    sa.Column('terms', sa.String(length=50), nullable=True),
    sa.Column('post_period', sa.String(length=20), nullable=True),
    sa.Column('amount', sa.Numeric(precision=18, scale=2), server_default='0', nullable=False),
    sa.Column('balance', sa.Numeric(precision=18, scale=2), server_default='0', nullable=False),
    sa.Column('color_status', sa.String(length=50), nullable=True),
    sa.Column('last_modified_by_color', sa.String(length=100), nullable=True),
    sa.Column('promise_date', sa.Date(), nullable=True),
    sa.Column('promise_by', sa.UUID(), nullable=True),
    sa.Column('last_touched_date', sa.DateTime(), nullable=True),
    sa.Column('last_modified_datetime', sa.DateTime(), nullable=True),
    sa.Column('raw_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('synced_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    _created(),
    _updated(),
    sa.CheckConstraint("reference_number ~ '^[0-9]{6}$'", name='chk_invoice_reference_six_digits'),
    sa.ForeignKeyConstraint(
        ['color_status'], ['invoice_color_status_options.status_name'],
        onupdate='CASCADE', ondelete='SET NULL',
    ),
    _user_fk('promise_by'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('reference_number')
    )
    op.create_index('idx_invoices_customer', 'acumatica_invoices', ['customer'], unique=False)
    op.create_index('idx_invoices_status_balance', 'acumatica_invoices', ['status', 'balance'], unique=False)
    op.create_index('idx_invoices_color_status', 'acumatica_invoices', ['color_status'], unique=False)
    op.create_index('idx_invoices_date', 'acumatica_invoices', ['date'], unique=False)

    op.create_table('acumatica_payments',
    _id(),
    sa.Column('reference_number', sa.String(length=50), nullable=False),
    sa.Column('type', sa.String(length=50), nullable=False),
    sa.Column('status', sa.String(length=50), nullable=True),
    sa.Column('customer_id', sa.String(length=50), nullable=True),
    sa.Column('application_date', sa.DateTime(), nullable=True),
    sa.Column('payment_amount', sa.Numeric(precision=18, scale=2), server_default='0', nullable=False),
    sa.Column('available_balance', sa.Numeric(precision=18, scale=2), server_default='0', nullable=False),
    sa.Column('payment_method', sa.String(length=50), nullable=True),
    sa.Column('payment_ref', sa.String(length=100), nullable=True),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('last_modified_datetime', sa.DateTime(), nullable=True),
    sa.Column('raw_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('synced_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    _created(),
    _updated(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('reference_number', 'type', name='uq_payment_reference_type')
    )
    op.create_index('idx_payments_customer_date', 'acumatica_payments', ['customer_id', 'application_date'], unique=False)

    op.create_table('payment_invoice_applications',
    _id(),
    sa.Column('payment_id', sa.UUID(), nullable=False),
    sa.Column('payment_reference_number', sa.String(length=50), nullable=False),
    sa.Column('invoice_reference_number', sa.String(length=50), nullable=False),
    sa.Column('customer_id', sa.String(length=50), nullable=True),
    sa.Column('doc_type', sa.String(length=50), nullable=True),
    sa.Column('application_date', sa.DateTime(), nullable=True),
    sa.Column('amount_paid', sa.Numeric(precision=18, scale=2), server_default='0', nullable=False),
    sa.Column('balance', sa.Numeric(precision=18, scale=2), nullable=True),
    sa.Column('cash_discount_taken', sa.Numeric(precision=18, scale=2), nullable=True),
    _created(),
    _updated(),
    sa.ForeignKeyConstraint(['payment_id'], ['acumatica_payments.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('payment_id', 'invoice_reference_number', name='uq_payment_invoice_application')
    )
    op.create_index('idx_payment_apps_invoice_ref', 'payment_invoice_applications', ['invoice_reference_number'], unique=False)

    # 4. invoice memos and activity
    op.create_table('invoice_memos',
    _id(),
    sa.Column('invoice_id', sa.UUID(), nullable=False),
    sa.Column('invoice_reference', sa.String(length=6), nullable=False),
    sa.Column('user_id', sa.UUID(), nullable=False),
    sa.Column('memo_text', sa.Text(), nullable=False),
    _created(),
    _updated(),
    sa.ForeignKeyConstraint(['invoice_id'], ['acumatica_invoices.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['user_id'], ['user_profiles.id']),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_invoice_memos_invoice', 'invoice_memos', ['invoice_id'], unique=False)

    op.create_table('invoice_memo_attachments',
    _id(),
    sa.Column('memo_id', sa.UUID(), nullable=False),
    sa.Column('file_name', sa.String(length=255), nullable=False),
    sa.Column('file_path', sa.Text(), nullable=False),
    sa.Column('file_type', sa.String(length=100), nullable=False),
    sa.Column('file_size', sa.Integer(), nullable=False),
    _created(),
    sa.CheckConstraint('file_size > 0', name='chk_memo_attachment_size_positive'),
    sa.ForeignKeyConstraint(['memo_id'], ['invoice_memos.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_memo_attachments_memo', 'invoice_memo_attachments', ['memo_id'], unique=False)

    op.create_table('invoice_activity_log',
    _id(),
    sa.Column('invoice_id', sa.UUID(), nullable=False),
    sa.Column('user_id', sa.UUID(), nullable=True),
    sa.Column('activity_type', sa.String(length=50), nullable=False),
    sa.Column('old_value', sa.Text(), nullable=True),
    sa.Column('new_value', sa.Text(), nullable=True),
    sa.Column('description', sa.Text(), nullable=False),
    _created(),
    sa.ForeignKeyConstraint(['invoice_id'], ['acumatica_invoices.id'], ondelete='CASCADE'),
    _user_fk('user_id'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_invoice_activity_invoice', 'invoice_activity_log', ['invoice_id'], unique=False)

    # 5. collection tickets
    op.create_table('collection_tickets',
    _id(),
    sa.Column('ticket_number', sa.String(length=20), nullable=False),
    sa.Column('customer_id', sa.String(length=50), nullable=False),
    sa.Column('customer_name', sa.Text(), nullable=True),
    sa.Column('assigned_collector_id', sa.UUID(), nullable=True),
    sa.Column('assigned_at', sa.DateTime(), nullable=True),
    sa.Column('assigned_by', sa.UUID(), nullable=True),
    sa.Column('status', sa.String(length=50), server_default='open', nullable=False),
    sa.Column('priority', sa.String(length=20), server_default='medium', nullable=False),
    sa.Column('ticket_type', sa.String(length=50), nullable=True),
    sa.Column('promise_date', sa.Date(), nullable=True),
    sa.Column('promise_by', sa.UUID(), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('created_by', sa.UUID(), nullable=True),
    sa.Column('resolved_at', sa.DateTime(), nullable=True),
    _created(),
    _updated(),
    sa.CheckConstraint("priority IN ('low','medium','high','urgent')", name='collection_tickets_priority_check'),
    sa.CheckConstraint("ticket_number ~ '^TKT[0-9]{6,}$'", name='collection_tickets_number_format'),
    sa.ForeignKeyConstraint(['status'], ['ticket_status_options.status_name'], onupdate='CASCADE'),
    _user_fk('assigned_collector_id'),
    _user_fk('assigned_by'),
    _user_fk('promise_by'),
    _user_fk('created_by'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('ticket_number')
    )
    op.create_index('idx_tickets_customer', 'collection_tickets', ['customer_id'], unique=False)
    op.create_index('idx_tickets_collector_status', 'collection_tickets', ['assigned_collector_id', 'status'], unique=False)

    op.create_table('ticket_invoices',
    _id(),
    sa.Column('ticket_id', sa.UUID(), nullable=False),
    sa.Column('invoice_reference_number', sa.String(length=6), nullable=False),
    sa.Column('added_by', sa.UUID(), nullable=True),
    sa.Column('added_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['ticket_id'], ['collection_tickets.id'], ondelete='CASCADE'),
    _user_fk('added_by'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('ticket_id', 'invoice_reference_number', name='uq_ticket_invoice')
    )
    op.create_index('idx_ticket_invoices_ref', 'ticket_invoices', ['invoice_reference_number'], unique=False)

    op.create_table('invoice_assignments',
    _id(),
    sa.Column('invoice_reference_number', sa.String(length=6), nullable=False),
    sa.Column('assigned_collector_id', sa.UUID(), nullable=True),
    sa.Column('ticket_id', sa.UUID(), nullable=True),
    sa.Column('assigned_by', sa.UUID(), nullable=True),
    sa.Column('assigned_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.ForeignKeyConstraint(['ticket_id'], ['collection_tickets.id'], ondelete='SET NULL'),
    _user_fk('assigned_collector_id'),
    _user_fk('assigned_by'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('invoice_reference_number')
    )
    op.create_index('idx_invoice_assignments_collector', 'invoice_assignments', ['assigned_collector_id'], unique=False)

    op.create_table('ticket_merge_events',
    _id(),
    sa.Column('target_ticket_id', sa.UUID(), nullable=False),
    sa.Column('source_ticket_ids', postgresql.ARRAY(sa.UUID()), nullable=False),
    sa.Column('source_ticket_numbers', postgresql.ARRAY(sa.Text()), nullable=True),
    sa.Column('merged_by', sa.UUID(), nullable=True),
    sa.Column('merged_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('invoice_count', sa.Integer(), server_default='0', nullable=False),
    sa.Column('invoice_reference_numbers', postgresql.ARRAY(sa.Text()), server_default='{}', nullable=False),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.ForeignKeyConstraint(['target_ticket_id'], ['collection_tickets.id'], ondelete='CASCADE'),
    _user_fk('merged_by'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_ticket_merge_events_target', 'ticket_merge_events', ['target_ticket_id'], unique=False)

    op.create_table('ticket_activity_log',
    _id(),
    sa.Column('ticket_id', sa.UUID(), nullable=False),
    sa.Column('activity_type', sa.String(length=50), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('old_value', sa.Text(), nullable=True),
    sa.Column('new_value', sa.Text(), nullable=True),
    sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=True),
    sa.Column('created_by', sa.UUID(), nullable=True),
    _created(),
    sa.ForeignKeyConstraint(['ticket_id'], ['collection_tickets.id'], ondelete='CASCADE'),
    _user_fk('created_by'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_ticket_activity_ticket_created', 'ticket_activity_log', ['ticket_id', 'created_at'], unique=False)

    op.create_table('ticket_notes',
    _id(),
    sa.Column('ticket_id', sa.UUID(), nullable=False),
    sa.Column('note_text', sa.Text(), nullable=False),
    sa.Column('created_by', sa.UUID(), nullable=True),
    _created(),
    _updated(),
    sa.ForeignKeyConstraint(['ticket_id'], ['collection_tickets.id'], ondelete='CASCADE'),
    _user_fk('created_by'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_ticket_notes_ticket', 'ticket_notes', ['ticket_id'], unique=False)

    op.create_table('auto_ticket_rules',
    _id(),
    sa.Column('customer_id', sa.String(length=50), nullable=False),
    sa.Column('condition_logic', sa.String(length=20), server_default='invoice_only', nullable=False),
    sa.Column('min_days_old', sa.Integer(), nullable=True),
    sa.Column('max_days_old', sa.Integer(), nullable=True),
    sa.Column('check_payment_within_days_min', sa.Integer(), nullable=True),
    sa.Column('check_payment_within_days_max', sa.Integer(), nullable=True),
    sa.Column('assigned_collector_id', sa.UUID(), nullable=False),
    sa.Column('created_by', sa.UUID(), nullable=True),
    sa.Column('active', sa.Boolean(), server_default=sa.true(), nullable=False),
    sa.Column('last_run_at', sa.DateTime(), nullable=True),
    _created(),
    _updated(),
    sa.CheckConstraint(
        "condition_logic IN ('invoice_only','payment_only','both_and','both_or')",
        name='auto_ticket_rules_condition_logic_check',
    ),
    sa.CheckConstraint(
        'min_days_old IS NULL OR max_days_old IS NULL OR min_days_old <= max_days_old',
        name='auto_ticket_rules_day_range_check',
    ),
    _user_fk('assigned_collector_id', ondelete='CASCADE'),
    _user_fk('created_by'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('customer_id')
    )

    # 6. reminders
    op.create_table('invoice_reminders',
    _id(),
    sa.Column('invoice_id', sa.UUID(), nullable=False),
    sa.Column('invoice_reference_number', sa.String(length=6), nullable=True),
    sa.Column('user_id', sa.UUID(), nullable=False),
    sa.Column('reminder_date', sa.DateTime(), nullable=False),
    sa.Column('reminder_message', sa.Text(), nullable=True),
    sa.Column('send_email', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('is_triggered', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('triggered_at', sa.DateTime(), nullable=True),
    _created(),
    _updated(),
    sa.ForeignKeyConstraint(['invoice_id'], ['acumatica_invoices.id'], ondelete='CASCADE'),
    _user_fk('user_id', ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_invoice_reminders_user', 'invoice_reminders', ['user_id'], unique=False)

    op.create_table('user_reminder_notifications',
    _id(),
    sa.Column('user_id', sa.UUID(), nullable=False),
    sa.Column('reminder_id', sa.UUID(), nullable=False),
    sa.Column('invoice_id', sa.UUID(), nullable=True),
    sa.Column('title', sa.String(length=200), nullable=False),
    sa.Column('message', sa.Text(), nullable=True),
    sa.Column('is_read', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('read_at', sa.DateTime(), nullable=True),
    _created(),
    sa.ForeignKeyConstraint(['reminder_id'], ['invoice_reminders.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['invoice_id'], ['acumatica_invoices.id'], ondelete='CASCADE'),
    _user_fk('user_id', ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_reminder_notifications_user_unread', 'user_reminder_notifications', ['user_id', 'is_read'], unique=False)

    # 7. sync bookkeeping and audit trails
    op.create_table('sync_status',
    _id(),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('status', sa.String(length=20), server_default='idle', nullable=False),
    sa.Column('last_sync_started_at', sa.DateTime(), nullable=True),
    sa.Column('last_sync_completed_at', sa.DateTime(), nullable=True),
    sa.Column('last_successful_sync', sa.DateTime(), nullable=True),
    sa.Column('records_synced', sa.Integer(), server_default='0', nullable=False),
    sa.Column('records_updated', sa.Integer(), server_default='0', nullable=False),
    sa.Column('records_created', sa.Integer(), server_default='0', nullable=False),
    sa.Column('errors', postgresql.JSONB(astext_type=sa.Text()), server_default='[]', nullable=False),
    sa.Column('last_error', sa.Text(), nullable=True),
    sa.Column('sync_enabled', sa.Boolean(), server_default=sa.true(), nullable=False),
    sa.Column('sync_interval_minutes', sa.Integer(), server_default='5', nullable=False),
    sa.Column('lookback_minutes', sa.Integer(), server_default='2', nullable=False),
    _created(),
    _updated(),
    sa.CheckConstraint("entity_type IN ('customer','invoice','payment','all')", name='sync_status_entity_type_check'),
    sa.CheckConstraint("status IN ('idle','running','completed','failed')", name='sync_status_status_check'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('entity_type')
    )

    op.create_table('sync_change_logs',
    _id(),
    sa.Column('sync_type', sa.String(length=30), nullable=False),
    sa.Column('action_type', sa.String(length=30), nullable=False),
    sa.Column('entity_id', sa.String(length=100), nullable=True),
    sa.Column('entity_reference', sa.String(length=100), nullable=True),
    sa.Column('entity_name', sa.Text(), nullable=True),
    sa.Column('change_summary', sa.Text(), nullable=True),
    sa.Column('change_details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('sync_source', sa.String(length=30), server_default='scheduled_sync', nullable=False),
    sa.Column('user_id', sa.UUID(), nullable=True),
    _created(),
    sa.CheckConstraint(
        "sync_type IN ('customer','invoice','payment','payment_application')",
        name='sync_change_logs_sync_type_check',
    ),
    sa.CheckConstraint(
        "action_type IN ('created','updated','closed','reopened','deleted',"
        "'status_changed','paid','partially_paid')",
        name='sync_change_logs_action_type_check',
    ),
    sa.CheckConstraint(
        "sync_source IN ('webhook','scheduled_sync','manual_sync','bulk_fetch','batch_processing')",
        name='sync_change_logs_sync_source_check',
    ),
    _user_fk('user_id'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_sync_change_logs_type_created', 'sync_change_logs', ['sync_type', 'created_at'], unique=False)

    op.create_table('acumatica_sync_credentials',
    _id(),
    sa.Column('acumatica_url', sa.Text(), nullable=False),
    sa.Column('username', sa.String(length=200), nullable=False),
    sa.Column('password', sa.Text(), nullable=False),
    sa.Column('company', sa.String(length=200), nullable=True),
    sa.Column('branch', sa.String(length=200), nullable=True),
    sa.Column('service_base_url', sa.Text(), nullable=True),
    sa.Column('service_token', sa.Text(), nullable=True),
    sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
    _created(),
    _updated(),
    sa.PrimaryKeyConstraint('id')
    )

    op.create_table('cron_job_logs',
    _id(),
    sa.Column('job_name', sa.String(length=100), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('message', sa.Text(), nullable=True),
    sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('executed_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_cron_job_logs_job_executed', 'cron_job_logs', ['job_name', 'executed_at'], unique=False)

    op.create_table('user_activity_logs',
    _id(),
    sa.Column('user_id', sa.UUID(), nullable=True),
    sa.Column('action_type', sa.String(length=100), nullable=False),
    sa.Column('entity_type', sa.String(length=50), nullable=False),
    sa.Column('entity_id', sa.String(length=100), nullable=True),
    sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=True),
    sa.Column('ip_address', postgresql.INET(), nullable=True),
    _created(),
    _user_fk('user_id'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_user_activity_user', 'user_activity_logs', ['user_id'], unique=False)
    op.create_index('idx_user_activity_entity', 'user_activity_logs', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_user_activity_created', 'user_activity_logs', [sa.text('created_at DESC')], unique=False)

    # 8. email automation
    op.create_table('email_formulas',
    _id(),
    sa.Column('name', sa.String(length=200), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('schedule', postgresql.JSONB(astext_type=sa.Text()), server_default='[]', nullable=False),
    _created(),
    _updated(),
    sa.PrimaryKeyConstraint('id')
    )

    op.create_table('email_templates',
    _id(),
    sa.Column('name', sa.String(length=200), nullable=False),
    sa.Column('subject', sa.Text(), nullable=False),
    sa.Column('body', sa.Text(), nullable=False),
    _created(),
    _updated(),
    sa.PrimaryKeyConstraint('id')
    )

    op.create_table('email_customers',
    _id(),
    sa.Column('name', sa.String(length=200), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('acumatica_customer_id', sa.String(length=50), nullable=True),
    sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
    sa.Column('responded_this_month', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('postpone_until', sa.DateTime(), nullable=True),
    _created(),
    _updated(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )

    op.create_table('email_customer_assignments',
    _id(),
    sa.Column('customer_id', sa.UUID(), nullable=False),
    sa.Column('formula_id', sa.UUID(), nullable=True),
    sa.Column('template_id', sa.UUID(), nullable=True),
    sa.Column('start_day_of_month', sa.Integer(), server_default='1', nullable=False),
    sa.Column('timezone', sa.String(length=64), server_default='America/New_York', nullable=False),
    sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
    _created(),
    _updated(),
    sa.CheckConstraint('start_day_of_month BETWEEN 1 AND 31', name='email_assignments_start_day_check'),
    sa.ForeignKeyConstraint(['customer_id'], ['email_customers.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['formula_id'], ['email_formulas.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['template_id'], ['email_templates.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_email_assignments_active', 'email_customer_assignments', ['is_active'], unique=False)

    op.create_table('email_logs',
    _id(),
    sa.Column('assignment_id', sa.UUID(), nullable=True),
    sa.Column('customer_id', sa.UUID(), nullable=True),
    sa.Column('template_id', sa.UUID(), nullable=True),
    sa.Column('recipient_email', sa.String(length=255), nullable=False),
    sa.Column('subject', sa.Text(), nullable=True),
    sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
    sa.Column('scheduled_for', sa.DateTime(), nullable=True),
    sa.Column('scheduled_date', sa.Date(), nullable=True),
    sa.Column('sent_at', sa.DateTime(), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('provider_message_id', sa.String(length=200), nullable=True),
    sa.Column('dedup_key', sa.Text(), nullable=True),
    _created(),
    sa.CheckConstraint("status IN ('pending','sent','failed')", name='email_logs_status_check'),
    sa.ForeignKeyConstraint(['assignment_id'], ['email_customer_assignments.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['customer_id'], ['email_customers.id'], ondelete='SET NULL'),
    sa.ForeignKeyConstraint(['template_id'], ['email_templates.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_email_logs_customer_created', 'email_logs', ['customer_id', 'created_at'], unique=False)

    # 9. Seed option tables and sync_status rows
    op.execute("""
        INSERT INTO invoice_color_status_options
            (status_name, display_name, color_class, sort_order, is_active, is_system)
        VALUES
            ('red', 'Will Not Pay', 'bg-red-100 text-red-800 border-red-300', 1, true, true),
            ('yellow', 'Will Take Care', 'bg-yellow-100 text-yellow-800 border-yellow-300', 2, true, true),
            ('green', 'Will Pay', 'bg-green-100 text-green-800 border-green-300', 3, true, true),
            ('orange', 'Disputed', 'bg-orange-100 text-orange-800 border-orange-300', 4, true, true)
    """)
    op.execute("""
        INSERT INTO ticket_status_options
            (status_name, display_name, sort_order, is_active, is_system)
        VALUES
            ('open', 'Open', 1, true, true),
            ('pending', 'Pending', 2, true, true),
            ('promised', 'Promised', 3, true, true),
            ('paid', 'Paid', 4, true, true),
            ('disputed', 'Disputed', 5, true, true),
            ('closed', 'Closed', 6, true, true)
    """)
    op.execute("""
        INSERT INTO ticket_type_options (value, label, sort_order)
        VALUES
            ('overdue payment', 'Overdue Payment', 1),
            ('dispute', 'Dispute', 2),
            ('follow up', 'Follow Up', 3),
            ('settlement', 'Settlement', 4)
    """)
    op.execute("""
        INSERT INTO sync_status (entity_type, status, sync_interval_minutes, lookback_minutes)
        VALUES ('customer', 'idle', 5, 2), ('invoice', 'idle', 5, 2), ('payment', 'idle', 5, 2)
    """)


def downgrade() -> None:
    for table in [
        'email_logs', 'email_customer_assignments', 'email_customers', 'email_templates',
        'email_formulas', 'user_activity_logs', 'cron_job_logs', 'acumatica_sync_credentials',
        'sync_change_logs', 'sync_status', 'user_reminder_notifications', 'invoice_reminders',
        'auto_ticket_rules', 'ticket_notes', 'ticket_activity_log', 'ticket_merge_events',
        'invoice_assignments', 'ticket_invoices', 'collection_tickets', 'invoice_activity_log',
        'invoice_memo_attachments', 'invoice_memos', 'payment_invoice_applications',
        'acumatica_payments', 'acumatica_invoices', 'acumatica_customers', 'ticket_type_options',
        'ticket_status_options', 'invoice_color_status_options', 'pending_users', 'user_profiles',
    ]:
        op.drop_table(table)
