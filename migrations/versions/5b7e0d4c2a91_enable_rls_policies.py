"""enable_rls_policies

Revision ID: 5b7e0d4c2a91
Revises: 3f1a9c2d7b10
Create Date: 2026-03-02 10:41:07.118204+00:00

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '5b7e0d4c2a91'
down_revision: Union[str, None] = '3f1a9c2d7b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Shared AR data: every staff role reads, collection roles write
COLLECTION_TABLES = [
    "acumatica_customers", "acumatica_invoices", "acumatica_payments",
    "payment_invoice_applications", "invoice_memos", "invoice_memo_attachments",
    "invoice_activity_log", "collection_tickets", "ticket_invoices",
    "invoice_assignments", "ticket_merge_events", "ticket_activity_log",
    "ticket_notes", "invoice_color_status_options", "ticket_status_options",
    "ticket_type_options",
]

# Management data: managers and admins
MANAGEMENT_TABLES = [
    "auto_ticket_rules", "sync_status", "sync_change_logs", "user_activity_logs",
    "cron_job_logs",
]

# Backend configuration
SERVICE_TABLES = [
    "acumatica_sync_credentials", "email_formulas", "email_templates",
    "email_customers", "email_customer_assignments", "email_logs", "pending_users",
]

# Rows belong to one user
OWNED_TABLES = ["invoice_reminders", "user_reminder_notifications"]

READ_ROLES = "('admin','manager','collector','secretary','developer','viewer')"
WRITE_ROLES = "('admin','manager','collector','secretary','developer')"
MANAGER_ROLES = "('admin','manager','developer')"

IS_SERVICE = "app_current_role() = 'service_role'"
CAN_READ = f"({IS_SERVICE} OR app_current_role() IN {READ_ROLES})"
CAN_WRITE = f"({IS_SERVICE} OR app_current_role() IN {WRITE_ROLES})"
CAN_MANAGE = f"({IS_SERVICE} OR app_current_role() IN {MANAGER_ROLES})"
IS_ADMIN = f"({IS_SERVICE} OR app_current_role() = 'admin')"
IS_OWNER = f"({IS_SERVICE} OR user_id = app_current_user_id())"


def _enable_rls(table: str) -> None:
    # FORCE applies the policies to the table owner too; the app connects as the owner
    op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
    op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")


def _disable_rls(table: str) -> None:
    op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
    op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")


def _policy(name: str, table: str, command: str, using: str, check: str = None) -> str:
    sql = f"CREATE POLICY {name} ON {table} FOR {command}"
    if command != "INSERT":
        sql += f" USING {using}"
    if check:
        sql += f" WITH CHECK {check}"
    return sql


def upgrade() -> None:
    # Requests without claims (scheduled jobs, internal hooks) act as service_role
    op.execute("""
        CREATE OR REPLACE FUNCTION app_current_user_id() RETURNS uuid
        LANGUAGE sql STABLE AS $$
            SELECT nullif(current_setting('request.jwt.claim.sub', true), '')::uuid
        $$
    """)
    op.execute("""
        CREATE OR REPLACE FUNCTION app_current_role() RETURNS text
        LANGUAGE sql STABLE AS $$
            SELECT coalesce(
                nullif(current_setting('request.jwt.claim.role', true), ''),
                'service_role'
            )
        $$
    """)

    for table in COLLECTION_TABLES:
        _enable_rls(table)
        op.execute(_policy("staff_read", table, "SELECT", CAN_READ))
        op.execute(_policy("collection_write", table, "ALL", CAN_WRITE, CAN_WRITE))

    for table in MANAGEMENT_TABLES:
        _enable_rls(table)
        op.execute(_policy("manager_access", table, "ALL", CAN_MANAGE, CAN_MANAGE))

    # Every collection action writes a user activity row
    op.execute(_policy("staff_insert", "user_activity_logs", "INSERT", None, CAN_WRITE))

    for table in SERVICE_TABLES:
        _enable_rls(table)
        op.execute(_policy("service_access", table, "ALL", CAN_MANAGE, CAN_MANAGE))

    for table in OWNED_TABLES:
        _enable_rls(table)
        op.execute(_policy("owner_access", table, "ALL", IS_OWNER, IS_OWNER))

    self_or_staff = f"({IS_SERVICE} OR id = app_current_user_id() OR app_current_role() IN {READ_ROLES})"
    self_or_admin = f"({IS_SERVICE} OR id = app_current_user_id() OR app_current_role() = 'admin')"
    _enable_rls("user_profiles")
    op.execute(_policy("profile_read", "user_profiles", "SELECT", self_or_staff))
    op.execute(_policy("profile_update", "user_profiles", "UPDATE", self_or_admin, self_or_admin))
    op.execute(_policy("profile_admin", "user_profiles", "ALL", IS_ADMIN, IS_ADMIN))


def downgrade() -> None:
    for policy in ("profile_admin", "profile_update", "profile_read"):
        op.execute(f"DROP POLICY IF EXISTS {policy} ON user_profiles")
    _disable_rls("user_profiles")

    for table in reversed(OWNED_TABLES):
        op.execute(f"DROP POLICY IF EXISTS owner_access ON {table}")
        _disable_rls(table)

    for table in reversed(SERVICE_TABLES):
        op.execute(f"DROP POLICY IF EXISTS service_access ON {table}")
        _disable_rls(table)

    op.execute("DROP POLICY IF EXISTS staff_insert ON user_activity_logs")
    for table in reversed(MANAGEMENT_TABLES):
        op.execute(f"DROP POLICY IF EXISTS manager_access ON {table}")
        _disable_rls(table)

    for table in reversed(COLLECTION_TABLES):
        op.execute(f"DROP POLICY IF EXISTS collection_write ON {table}")
        op.execute(f"DROP POLICY IF EXISTS staff_read ON {table}")
        _disable_rls(table)

    op.execute("DROP FUNCTION IF EXISTS app_current_role()")
    op.execute("DROP FUNCTION IF EXISTS app_current_user_id()")
