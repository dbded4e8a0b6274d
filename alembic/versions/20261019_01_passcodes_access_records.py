"""passcodes and access records

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "passcodes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=128), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("usage_limit", sa.Integer(), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("application_id", sa.Integer(), nullable=True),
        sa.Column("permissions", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("usage_limit >= 1", name="ck_passcodes_usage_limit_positive"),
        sa.CheckConstraint("usage_count >= 0", name="ck_passcodes_usage_count_non_negative"),
        sa.CheckConstraint("usage_count <= usage_limit", name="ck_passcodes_usage_within_limit"),
        sa.CheckConstraint("status IN ('active', 'expired', 'revoked')", name="ck_passcodes_status"),
        sa.CheckConstraint("type IN ('employee', 'visitor')", name="ck_passcodes_type"),
    )
    op.create_index("ix_passcodes_code", "passcodes", ["code"], unique=True)
    op.create_index("ix_passcodes_user_id", "passcodes", ["user_id"])
    op.create_index("ix_passcodes_status", "passcodes", ["status"])
    op.create_index("ix_passcodes_application_id", "passcodes", ["application_id"])
    op.create_index("ix_passcodes_user_status", "passcodes", ["user_id", "status"])

    op.create_table(
        "access_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("passcode_id", sa.Integer(), nullable=True),
        sa.Column("device_id", sa.String(length=64), nullable=False),
        sa.Column("device_type", sa.String(length=32), nullable=True),
        sa.Column("direction", sa.String(length=8), nullable=False, server_default="in"),
        sa.Column("result", sa.String(length=16), nullable=False),
        sa.Column("fail_reason", sa.String(length=32), nullable=True),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("venue_id", sa.Integer(), nullable=True),
        sa.Column("floor_id", sa.Integer(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("direction IN ('in', 'out')", name="ck_access_records_direction"),
        sa.CheckConstraint(
            "(result = 'success' AND fail_reason IS NULL) OR (result = 'failed' AND fail_reason IS NOT NULL)",
            name="ck_access_records_fail_reason",
        ),
    )
    op.create_index("ix_access_records_user_id", "access_records", ["user_id"])
    op.create_index("ix_access_records_passcode_id", "access_records", ["passcode_id"])
    op.create_index("ix_access_records_device_id", "access_records", ["device_id"])
    op.create_index("ix_access_records_timestamp", "access_records", ["timestamp"])
    op.create_index("ix_access_records_device_timestamp", "access_records", ["device_id", "timestamp"])


def downgrade() -> None:
    op.drop_index("ix_access_records_device_timestamp", table_name="access_records")
    op.drop_index("ix_access_records_timestamp", table_name="access_records")
    op.drop_index("ix_access_records_device_id", table_name="access_records")
    op.drop_index("ix_access_records_passcode_id", table_name="access_records")
    op.drop_index("ix_access_records_user_id", table_name="access_records")
    op.drop_table("access_records")
    op.drop_index("ix_passcodes_user_status", table_name="passcodes")
    op.drop_index("ix_passcodes_application_id", table_name="passcodes")
    op.drop_index("ix_passcodes_status", table_name="passcodes")
    op.drop_index("ix_passcodes_user_id", table_name="passcodes")
    op.drop_index("ix_passcodes_code", table_name="passcodes")
    op.drop_table("passcodes")
