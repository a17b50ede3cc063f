from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "0001_create_portal_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def _create_indexes(table_name: str, columns: list[str]) -> None:
    for column in columns:
        op.create_index(f"ix_{table_name}_{column}", table_name, [column], unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    existing = set(inspect(bind).get_table_names())

    if "customers" not in existing:
        op.create_table(
            "customers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("legal_name", sa.String(length=200), nullable=False),
            sa.Column("trade_name", sa.String(length=200), nullable=True),
            sa.Column("vat_id", sa.String(length=50), nullable=True),
            sa.Column("industry", sa.String(length=100), nullable=True),
            sa.Column("size", sa.String(length=20), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
            sa.Column("tags", sa.JSON(), nullable=False),
            *_timestamps(),
        )
        _create_indexes("customers", ["id", "status"])

    if "addresses" not in existing:
        op.create_table(
            "addresses",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False, server_default="BUSINESS"),
            sa.Column("street", sa.String(length=200), nullable=False),
            sa.Column("city", sa.String(length=100), nullable=False),
            sa.Column("postal_code", sa.String(length=20), nullable=False),
            sa.Column("country", sa.String(length=100), nullable=False),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
        )
        _create_indexes("addresses", ["id", "customer_id"])

    if "contacts" not in existing:
        op.create_table(
            "contacts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("position", sa.String(length=100), nullable=True),
            sa.Column("department", sa.String(length=100), nullable=True),
            sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
        )
        _create_indexes("contacts", ["id", "customer_id"])

    if "projects" not in existing:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PLANNING"),
            sa.Column("start_date", sa.DateTime(), nullable=True),
            sa.Column("end_date", sa.DateTime(), nullable=True),
            sa.Column("assignee_id", sa.Integer(), nullable=True),
            sa.Column("budget", sa.Float(), nullable=True),
            sa.Column("tags", sa.JSON(), nullable=False),
            sa.Column("departments", sa.JSON(), nullable=False),
            *_timestamps(),
        )
        _create_indexes("projects", ["id", "customer_id", "status", "assignee_id"])

    if "tasks" not in existing:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="TODO"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="MEDIUM"),
            sa.Column("type", sa.String(length=50), nullable=True),
            sa.Column("due_date", sa.DateTime(), nullable=True),
            sa.Column("assignee_id", sa.Integer(), nullable=True),
            sa.Column("reporter_id", sa.Integer(), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("customer_id", sa.Integer(), nullable=True),
            sa.Column("parent_task_id", sa.Integer(), nullable=True),
            sa.Column("departments", sa.JSON(), nullable=False),
            *_timestamps(),
        )
        _create_indexes(
            "tasks",
            ["id", "status", "due_date", "assignee_id", "project_id", "customer_id", "parent_task_id"],
        )

    if "tickets" not in existing:
        op.create_table(
            "tickets",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="OPEN"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="MEDIUM"),
            sa.Column("type", sa.String(length=20), nullable=False, server_default="SUPPORT"),
            sa.Column("assignee_id", sa.Integer(), nullable=True),
            sa.Column("reporter_id", sa.Integer(), nullable=True),
            sa.Column("customer_id", sa.Integer(), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("due_date", sa.DateTime(), nullable=True),
            sa.Column("tags", sa.JSON(), nullable=False),
            sa.Column("departments", sa.JSON(), nullable=False),
            *_timestamps(),
        )
        _create_indexes("tickets", ["id", "status", "assignee_id", "customer_id", "project_id"])

    if "comments" not in existing:
        op.create_table(
            "comments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("task_id", sa.Integer(), nullable=True),
            sa.Column("ticket_id", sa.Integer(), nullable=True),
            sa.Column("author_id", sa.Integer(), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            *_timestamps(),
        )
        _create_indexes("comments", ["id", "task_id", "ticket_id", "author_id"])

    if "quotes" not in existing:
        op.create_table(
            "quotes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("customer_id", sa.Integer(), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("number", sa.String(length=50), nullable=True),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
            *_timestamps(),
        )
        _create_indexes("quotes", ["id", "customer_id", "project_id"])

    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_type", sa.String(length=20), nullable=False, server_default="STAFF"),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("password_hash", sa.String(), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="MITARBEITER"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("departments", sa.JSON(), nullable=False),
            sa.Column("customer_id", sa.Integer(), nullable=True),
            sa.Column("last_login_at", sa.DateTime(), nullable=True),
            *_timestamps(),
        )
        _create_indexes("users", ["id", "user_type", "customer_id"])
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("action", sa.String(length=50), nullable=False),
            sa.Column("entity_type", sa.String(length=50), nullable=False),
            sa.Column("entity_id", sa.String(length=64), nullable=True),
            sa.Column("user_id", sa.String(length=64), nullable=True),
            sa.Column("user_email", sa.String(length=255), nullable=True),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("changes", sa.JSON(), nullable=True),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            sa.Column("timestamp", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )
        _create_indexes("audit_logs", ["id", "action", "entity_type", "entity_id", "user_id", "timestamp"])

    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("type", sa.String(length=50), nullable=False, server_default="info"),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("action_url", sa.String(length=500), nullable=True),
            sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(), nullable=True),
            sa.Column("timestamp", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )
        _create_indexes("notifications", ["id", "user_id", "timestamp"])

    if "settings" not in existing:
        op.create_table(
            "settings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("type", sa.String(length=50), nullable=False, unique=True, server_default="system"),
            sa.Column("general", sa.JSON(), nullable=False),
            sa.Column("email_settings", sa.JSON(), nullable=False),
            sa.Column("security", sa.JSON(), nullable=False),
            sa.Column("backup", sa.JSON(), nullable=False),
            *_timestamps(),
        )
        _create_indexes("settings", ["id"])

    if "login_attempts" not in existing:
        op.create_table(
            "login_attempts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("first_failed_at", sa.DateTime(), nullable=True),
            sa.Column("last_failed_at", sa.DateTime(), nullable=True),
            sa.Column("locked_until", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=True),
        )
        _create_indexes("login_attempts", ["id"])
        op.create_index("ix_login_attempts_email", "login_attempts", ["email"], unique=True)


def downgrade() -> None:
    for table_name in (
        "login_attempts",
        "settings",
        "notifications",
        "audit_logs",
        "users",
        "quotes",
        "comments",
        "tickets",
        "tasks",
        "projects",
        "contacts",
        "addresses",
        "customers",
    ):
        op.drop_table(table_name)
