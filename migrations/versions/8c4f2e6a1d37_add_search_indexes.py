"""add_search_indexes

Revision ID: 8c4f2e6a1d37
Revises: 5b7e0d4c2a91
Create Date: 2026-03-04 14:22:51.730916+00:00

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '8c4f2e6a1d37'
down_revision: Union[str, None] = '5b7e0d4c2a91'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


INDEXES = [
    # pg_trgm GIN indexes for ILIKE '%term%' search
    ("idx_invoices_customer_name_trgm",
     "ON acumatica_invoices USING gin (customer_name gin_trgm_ops)"),
    ("idx_invoices_reference_trgm",
     "ON acumatica_invoices USING gin (reference_number gin_trgm_ops)"),
    ("idx_invoices_customer_order_trgm",
     "ON acumatica_invoices USING gin (customer_order gin_trgm_ops)"),
    ("idx_customers_name_trgm",
     "ON acumatica_customers USING gin (customer_name gin_trgm_ops)"),
    ("idx_customers_id_trgm",
     "ON acumatica_customers USING gin (customer_id gin_trgm_ops)"),
    ("idx_payments_reference_trgm",
     "ON acumatica_payments USING gin (reference_number gin_trgm_ops)"),
    # Open-invoice lists and the auto-red job
    ("idx_invoices_open_due",
     "ON acumatica_invoices(customer, due_date) WHERE status = 'Open' AND balance > 0"),
    ("idx_invoices_promise_date",
     "ON acumatica_invoices(promise_date) WHERE promise_date IS NOT NULL"),
    # Foreign keys used by list filters
    ("idx_invoice_memos_user", "ON invoice_memos(user_id)"),
    ("idx_ticket_activity_created_by", "ON ticket_activity_log(created_by)"),
    ("idx_tickets_status_created", "ON collection_tickets(status, created_at DESC)"),
    ("idx_payment_apps_customer", "ON payment_invoice_applications(customer_id)"),
    ("idx_auto_ticket_rules_active", "ON auto_ticket_rules(active) WHERE active = true"),
]


def upgrade() -> None:
    for name, definition in INDEXES:
        op.execute(f"CREATE INDEX IF NOT EXISTS {name} {definition}")


def downgrade() -> None:
    for name, _ in reversed(INDEXES):
        op.execute(f"DROP INDEX IF EXISTS {name}")
