"""openHAB sync tables.

Revision ID: 001_openhab_sync
Revises:
Create Date: 2026-10-19

Creates tables for:
- connection_config: One openHAB connection per owner
- sensor: Internal sensors written by the sync engine
- sensor_mapping: openHAB item -> sensor links
- sensor_reading: Value history per sensor
- sync_log: Audit trail of sync runs
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_openhab_sync"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "connection_config",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("base_url", sa.String(500), nullable=False),
        sa.Column("credential_encrypted", sa.Text, nullable=True),
        sa.Column("poll_interval_seconds", sa.Integer, nullable=False, server_default="30"),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("owner_id", name="uq_connection_config_owner_id"),
        sa.CheckConstraint(
            "poll_interval_seconds BETWEEN 10 AND 3600",
            name="ck_connection_config_poll_interval_range",
        ),
    )

    op.create_table(
        "sensor",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(50), nullable=False, server_default="temperature"),
        sa.Column("status", sa.String(50), nullable=False, server_default="online"),
        sa.Column("last_reading", sa.Float, nullable=True),
        sa.Column("last_reading_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("twin_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_sensor_twin_id", "sensor", ["twin_id"])

    op.create_table(
        "sensor_mapping",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column(
            "config_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("connection_config.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "sensor_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("sensor.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("external_item_name", sa.String(255), nullable=False),
        sa.Column("external_item_type", sa.String(100), nullable=True),
        sa.Column("external_item_label", sa.String(255), nullable=True),
        sa.Column("sync_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("last_value", sa.String(255), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("config_id", "external_item_name", name="uq_sensor_mapping_config_item"),
        sa.UniqueConstraint("sensor_id", name="uq_sensor_mapping_sensor_id"),
    )
    op.create_index("ix_sensor_mapping_config_id", "sensor_mapping", ["config_id"])

    op.create_table(
        "sensor_reading",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column(
            "sensor_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("sensor.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("value", sa.Float, nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_sensor_reading_sensor_recorded", "sensor_reading", ["sensor_id", "recorded_at"])

    op.create_table(
        "sync_log",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column(
            "config_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("connection_config.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sync_type", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("items_synced", sa.Integer, nullable=True),
        sa.Column("items_total", sa.Integer, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_sync_log_config_created", "sync_log", ["config_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_sync_log_config_created", table_name="sync_log")
    op.drop_table("sync_log")
    op.drop_index("ix_sensor_reading_sensor_recorded", table_name="sensor_reading")
    op.drop_table("sensor_reading")
    op.drop_index("ix_sensor_mapping_config_id", table_name="sensor_mapping")
    op.drop_table("sensor_mapping")
    op.drop_index("ix_sensor_twin_id", table_name="sensor")
    op.drop_table("sensor")
    op.drop_table("connection_config")
