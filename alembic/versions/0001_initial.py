"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


status_enum = sa.Enum("UP", "DOWN", name="status_enum")
check_status_enum = sa.Enum("UNKNOWN", "UP", "DOWN", name="check_status_enum")
http_method_enum = sa.Enum("GET", "HEAD", "POST", name="http_method_enum")
incident_status_enum = sa.Enum("OPEN", "RESOLVED", name="incident_status_enum")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True, unique=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "checks",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("method", http_method_enum, nullable=False),
        sa.Column("interval_seconds", sa.Integer(), nullable=False),
        sa.Column("timeout_ms", sa.Integer(), nullable=True),
        sa.Column("expected_status", sa.Integer(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_status", check_status_enum, nullable=False, server_default="UNKNOWN"),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "interval_seconds BETWEEN 30 AND 3600",
            name="ck_checks_interval_seconds",
        ),
        sa.CheckConstraint(
            "timeout_ms BETWEEN 1000 AND 30000",
            name="ck_checks_timeout_ms",
        ),
    )
    op.create_index("ix_checks_enabled", "checks", ["enabled"], unique=False)
    op.create_index("ix_checks_user_id", "checks", ["user_id"], unique=False)

    op.create_table(
        "check_results",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "check_id",
            sa.Uuid(),
            sa.ForeignKey("checks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", status_enum, nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_check_results_check_time",
        "check_results",
        ["check_id", "checked_at"],
        unique=False,
    )

    op.create_table(
        "incidents",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "check_id",
            sa.Uuid(),
            sa.ForeignKey("checks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", incident_status_enum, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("summary", sa.Text(), nullable=False),
    )
    op.create_index("ix_incidents_check_status", "incidents", ["check_id", "status"], unique=False)
    op.create_index("ix_incidents_started_at", "incidents", ["started_at"], unique=False)
    op.create_index(
        "uq_incidents_open",
        "incidents",
        ["check_id"],
        unique=True,
        postgresql_where=sa.text("status = 'OPEN'"),
        sqlite_where=sa.text("status = 'OPEN'"),
    )

    op.create_table(
        "notification_preferences",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("channel", sa.String(length=50), nullable=False),
        sa.Column("address", sa.String(length=320), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "user_id",
            "channel",
            "address",
            name="uq_notification_preferences_destination",
        ),
    )
    op.create_index(
        "ix_notification_preferences_user_enabled",
        "notification_preferences",
        ["user_id", "enabled"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_notification_preferences_user_enabled", table_name="notification_preferences")
    op.drop_table("notification_preferences")

    op.drop_index("uq_incidents_open", table_name="incidents")
    op.drop_index("ix_incidents_started_at", table_name="incidents")
    op.drop_index("ix_incidents_check_status", table_name="incidents")
    op.drop_table("incidents")

    op.drop_index("ix_check_results_check_time", table_name="check_results")
    op.drop_table("check_results")

    op.drop_index("ix_checks_user_id", table_name="checks")
    op.drop_index("ix_checks_enabled", table_name="checks")
    op.drop_table("checks")

    op.drop_table("users")

    bind = op.get_bind()
    incident_status_enum.drop(bind, checkfirst=True)
    http_method_enum.drop(bind, checkfirst=True)
    check_status_enum.drop(bind, checkfirst=True)
    status_enum.drop(bind, checkfirst=True)
