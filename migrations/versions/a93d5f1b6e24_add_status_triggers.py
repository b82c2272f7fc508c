"""add_status_triggers

Revision ID: a93d5f1b6e24
Revises: 8c4f2e6a1d37
Create Date: 2026-03-06 08:05:33.582170+00:00

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = 'a93d5f1b6e24'
down_revision: Union[str, None] = '8c4f2e6a1d37'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UPDATED_AT_TABLES = [
    "user_profiles", "invoice_color_status_options", "acumatica_customers",
    "acumatica_invoices", "acumatica_payments", "payment_invoice_applications",
    "invoice_memos", "collection_tickets", "ticket_notes", "auto_ticket_rules",
    "invoice_reminders", "sync_status", "acumatica_sync_credentials",
    "email_formulas", "email_templates", "email_customers",
    "email_customer_assignments",
]


def upgrade() -> None:
    # 1. updated_at maintenance
    op.execute("""
        CREATE OR REPLACE FUNCTION set_updated_at() RETURNS trigger
        LANGUAGE plpgsql AS $$
        BEGIN
            NEW.updated_at := now();
            RETURN NEW;
        END;
        $$
    """)
    for table in UPDATED_AT_TABLES:
        op.execute(
            f"CREATE TRIGGER trg_{table}_updated_at BEFORE UPDATE ON {table} "
            f"FOR EACH ROW EXECUTE FUNCTION set_updated_at()"
        )

    # 2. A red invoice that gets paid off drops its color
    op.execute("""
        CREATE OR REPLACE FUNCTION clear_red_when_paid() RETURNS trigger
        LANGUAGE plpgsql AS $$
        BEGIN
            IF NEW.color_status = 'red'
               AND coalesce(OLD.balance, 0) > 0
               AND coalesce(NEW.balance, 0) <= 0 THEN
                NEW.color_status := NULL;
                NEW.last_modified_by_color := 'system_auto_cleared_paid';
            END IF;
            RETURN NEW;
        END;
        $$
    """)
    op.execute(
        "CREATE TRIGGER trg_invoices_clear_red_when_paid "
        "BEFORE UPDATE OF balance ON acumatica_invoices "
        "FOR EACH ROW EXECUTE FUNCTION clear_red_when_paid()"
    )

    # 3. Close tickets once every invoice on them is closed or paid
    op.execute("""
        CREATE OR REPLACE FUNCTION close_tickets_when_invoices_paid() RETURNS trigger
        LANGUAGE plpgsql AS $$
        DECLARE
            t RECORD;
        BEGIN
            IF NOT (NEW.status = 'Closed' OR coalesce(NEW.balance, 0) <= 0) THEN
                RETURN NEW;
            END IF;

            FOR t IN
                SELECT ct.id, ct.status
                FROM collection_tickets ct
                JOIN ticket_invoices ti ON ti.ticket_id = ct.id
                WHERE ti.invoice_reference_number = NEW.reference_number
                  AND ct.status <> 'closed'
            LOOP
                IF NOT EXISTS (
                    SELECT 1
                    FROM ticket_invoices ti
                    JOIN acumatica_invoices ai ON ai.reference_number = ti.invoice_reference_number
                    WHERE ti.ticket_id = t.id
                      AND ai.status <> 'Closed'
                      AND ai.balance > 0
                ) THEN
                    UPDATE collection_tickets
                    SET status = 'closed', resolved_at = now()
                    WHERE id = t.id;

                    INSERT INTO ticket_activity_log
                        (ticket_id, activity_type, description, old_value, new_value, metadata)
                    VALUES (
                        t.id, 'ticket_closed',
                        'Ticket closed automatically: all invoices paid',
                        t.status, 'closed',
                        jsonb_build_object('trigger_invoice', NEW.reference_number)
                    );
                END IF;
            END LOOP;
            RETURN NEW;
        END;
        $$
    """)
    op.execute(
        "CREATE TRIGGER trg_invoices_close_paid_tickets "
        "AFTER UPDATE OF status, balance ON acumatica_invoices "
        "FOR EACH ROW EXECUTE FUNCTION close_tickets_when_invoices_paid()"
    )

    # 4. Denormalized customer_name on tickets
    op.execute("""
        CREATE OR REPLACE FUNCTION backfill_ticket_customer_name() RETURNS trigger
        LANGUAGE plpgsql AS $$
        BEGIN
            IF NEW.customer_name IS NULL OR NEW.customer_name = '' THEN
                SELECT coalesce(c.customer_name, NEW.customer_id)
                INTO NEW.customer_name
                FROM acumatica_customers c
                WHERE c.customer_id = NEW.customer_id;

                IF NEW.customer_name IS NULL THEN
                    NEW.customer_name := NEW.customer_id;
                END IF;
            END IF;
            RETURN NEW;
        END;
        $$
    """)
    op.execute(
        "CREATE TRIGGER trg_tickets_customer_name "
        "BEFORE INSERT OR UPDATE OF customer_id ON collection_tickets "
        "FOR EACH ROW EXECUTE FUNCTION backfill_ticket_customer_name()"
    )
    op.execute("""
        UPDATE collection_tickets ct
        SET customer_name = coalesce(c.customer_name, ct.customer_id)
        FROM acumatica_customers c
        WHERE c.customer_id = ct.customer_id
          AND (ct.customer_name IS NULL OR ct.customer_name = '')
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_tickets_customer_name ON collection_tickets")
    op.execute("DROP FUNCTION IF EXISTS backfill_ticket_customer_name()")

    op.execute("DROP TRIGGER IF EXISTS trg_invoices_close_paid_tickets ON acumatica_invoices")
    op.execute("DROP FUNCTION IF EXISTS close_tickets_when_invoices_paid()")

    op.execute("DROP TRIGGER IF EXISTS trg_invoices_clear_red_when_paid ON acumatica_invoices")
    op.execute("DROP FUNCTION IF EXISTS clear_red_when_paid()")

    for table in reversed(UPDATED_AT_TABLES):
        op.execute(f"DROP TRIGGER IF EXISTS trg_{table}_updated_at ON {table}")
    op.execute("DROP FUNCTION IF EXISTS set_updated_at()")
