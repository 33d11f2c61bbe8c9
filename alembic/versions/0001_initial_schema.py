"""initial schema: users, profiles, organizations, contact transfers, outbox, audit

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _insp():
    bind = op.get_bind()
    return sa.inspect(bind)


def _has_table(name: str) -> bool:
    return name in _insp().get_table_names()


def upgrade():
    if not _has_table("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("hashed_password", sa.String, nullable=False),
            sa.Column("role", sa.String(length=50), nullable=False, server_default="member"),
            sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
            sa.Column("last_login_at", sa.DateTime, nullable=True),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)
        op.create_index("ix_users_role", "users", ["role"])

    if not _has_table("profiles"):
        op.create_table(
            "profiles",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("user_id", sa.Integer, nullable=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("first_name", sa.String(length=120), nullable=True),
            sa.Column("last_name", sa.String(length=120), nullable=True),
            sa.Column("organization", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("user_id", name="uq_profiles_user_id"),
        )
        op.create_index("ix_profiles_email", "profiles", ["email"], unique=True)

    if not _has_table("organizations"):
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("membership_status", sa.String(length=30), nullable=False, server_default="approved"),
            sa.Column("contact_person_id", sa.Integer, nullable=True),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.ForeignKeyConstraint(["contact_person_id"], ["profiles.id"], ondelete="SET NULL"),
        )
        op.create_index("ix_organizations_name", "organizations", ["name"])
        op.create_index("ix_organizations_contact_person_id", "organizations", ["contact_person_id"])

    if not _has_table("organization_transfer_requests"):
        op.create_table(
            "organization_transfer_requests",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("organization_id", sa.Integer, nullable=False),
            sa.Column("requested_by", sa.Integer, nullable=False),
            sa.Column("current_contact_id", sa.Integer, nullable=False),
            sa.Column("new_contact_id", sa.Integer, nullable=True),
            sa.Column("new_contact_email", sa.String(length=255), nullable=False),
            sa.Column("transfer_token", sa.String(length=128), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("expires_at", sa.DateTime, nullable=False),
            sa.Column("completed_at", sa.DateTime, nullable=True),
            sa.Column("processed_by", sa.Integer, nullable=True),
            sa.Column("admin_notes", sa.Text, nullable=True),
            sa.Column("version", sa.Integer, nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.CheckConstraint(
                "status IN ('pending','accepted','completed','cancelled','rejected','expired')",
                name="ck_transfer_requests_status",
            ),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["requested_by"], ["users.id"]),
            sa.ForeignKeyConstraint(["current_contact_id"], ["profiles.id"]),
            sa.ForeignKeyConstraint(["new_contact_id"], ["profiles.id"]),
            sa.ForeignKeyConstraint(["processed_by"], ["users.id"]),
        )
        op.create_index(
            "ix_organization_transfer_requests_organization_id",
            "organization_transfer_requests",
            ["organization_id"],
        )
        op.create_index(
            "ix_organization_transfer_requests_transfer_token",
            "organization_transfer_requests",
            ["transfer_token"],
            unique=True,
        )
        op.create_index(
            "ix_organization_transfer_requests_status",
            "organization_transfer_requests",
            ["status"],
        )
        op.create_index(
            "ix_organization_transfer_requests_new_contact_email",
            "organization_transfer_requests",
            ["new_contact_email"],
        )
        # at most one pending transfer per organization
        op.create_index(
            "uq_transfer_requests_pending_org",
            "organization_transfer_requests",
            ["organization_id"],
            unique=True,
            sqlite_where=sa.text("status = 'pending'"),
            postgresql_where=sa.text("status = 'pending'"),
        )

    if not _has_table("notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("organization_id", sa.Integer, nullable=True),
            sa.Column("transfer_request_id", sa.Integer, nullable=True),
            sa.Column("type", sa.String(length=60), nullable=False),
            sa.Column("channel", sa.String(length=30), nullable=False, server_default="email"),
            sa.Column("recipient", sa.String(length=255), nullable=False),
            sa.Column("payload", sa.Text, nullable=False, server_default="{}"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
            sa.Column("error", sa.Text, nullable=True),
            sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("sent_at", sa.DateTime, nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(
                ["transfer_request_id"], ["organization_transfer_requests.id"], ondelete="SET NULL"
            ),
        )
        op.create_index("ix_notifications_organization_id", "notifications", ["organization_id"])
        op.create_index("ix_notifications_transfer_request_id", "notifications", ["transfer_request_id"])
        op.create_index("ix_notifications_type", "notifications", ["type"])
        op.create_index("ix_notifications_status", "notifications", ["status"])

    if not _has_table("audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("organization_id", sa.Integer, nullable=True),
            sa.Column("user_id", sa.Integer, nullable=True),
            sa.Column("action", sa.String(length=80), nullable=False),
            sa.Column("entity_type", sa.String(length=60), nullable=True),
            sa.Column("entity_id", sa.Integer, nullable=True),
            sa.Column("meta", sa.Text, nullable=True),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        )
        op.create_index("ix_audit_logs_organization_id", "audit_logs", ["organization_id"])
        op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
        op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
        op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade():
    for name in (
        "audit_logs",
        "notifications",
        "organization_transfer_requests",
        "organizations",
        "profiles",
        "users",
    ):
        if _has_table(name):
            op.drop_table(name)
