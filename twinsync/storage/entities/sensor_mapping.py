"""Mapping of one openHAB item onto one sensor."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from twinsync.storage.models import Base, TimestampMixin, UUIDMixin


class SensorMapping(Base, UUIDMixin, TimestampMixin):
    """Links an external item under a connection to its target sensor.

    An item is mapped at most once per connection and a sensor is the
    target of at most one mapping. Deleting either parent deletes the
    mapping.
    """

    __tablename__ = "sensor_mapping"
    __table_args__ = (
        UniqueConstraint(
            "config_id",
            "external_item_name",
            name="uq_sensor_mapping_config_item",
        ),
    )

    config_id: Mapped[str] = mapped_column(
        ForeignKey("connection_config.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sensor_id: Mapped[str] = mapped_column(
        ForeignKey("sensor.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    external_item_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="openHAB item name",
    )
    external_item_type: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        doc="Declared openHAB type at mapping time (e.g. Number:Temperature)",
    )
    external_item_label: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    sync_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        doc="Excluded from sync when false; history is kept",
    )
    last_value: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        doc="Raw state string from the last successful sync",
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<SensorMapping(item={self.external_item_name!r}, sensor_id={self.sensor_id!r}, "
            f"sync_enabled={self.sync_enabled})>"
        )
