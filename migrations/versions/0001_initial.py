"""initial readiness schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _is_postgres() -> bool:
    return op.get_bind().dialect.name == "postgresql"


def _json_type():
    if _is_postgres():
        return postgresql.JSONB(astext_type=sa.Text())
    return sa.JSON()


def _json_object_default():
    if _is_postgres():
        return sa.text("'{}'::jsonb")
    return sa.text("'{}'")


def _now_default():
    if _is_postgres():
        return sa.text("now()")
    return sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    op.create_table(
        "devices",
        sa.Column("device_id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("external_device_id", sa.String(length=128), nullable=True),
        sa.Column("display_name", sa.String(length=256), nullable=True),
        sa.Column("variable_map", _json_type(), nullable=False, server_default=_json_object_default()),
        sa.Column("thresholds", _json_type(), nullable=False, server_default=_json_object_default()),
        sa.Column("window_minutes", sa.Integer(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now_default()),
    )
    op.create_index("ix_devices_enabled", "devices", ["enabled"], unique=False)

    op.create_table(
        "progress",
        sa.Column("device_id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("good_now", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("good_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("percent", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("level", sa.String(length=16), nullable=False),
        sa.Column("window_minutes", sa.Integer(), nullable=False),
        sa.Column("last_values", _json_type(), nullable=False, server_default=_json_object_default()),
        sa.Column("schema_version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "poll_runs",
        sa.Column("run_key", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("run_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ok_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("err_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("per_device", _json_type(), nullable=False, server_default=_json_object_default()),
        sa.Column("schema_version", sa.Integer(), nullable=False, server_default=sa.text("1")),
    )


def downgrade() -> None:
    op.drop_table("poll_runs")
    op.drop_table("progress")

    op.drop_index("ix_devices_enabled", table_name="devices")
    op.drop_table("devices")
