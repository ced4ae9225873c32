"""Append-only history of synced sensor values."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from twinsync.storage.models import Base, UUIDMixin


class SensorReading(Base, UUIDMixin):
    """One value taken from openHAB for a sensor."""

    __tablename__ = "sensor_reading"
    __table_args__ = (Index("ix_sensor_reading_sensor_recorded", "sensor_id", "recorded_at"),)

    sensor_id: Mapped[str] = mapped_column(
        ForeignKey("sensor.id", ondelete="CASCADE"),
        nullable=False,
    )
    value: Mapped[float] = mapped_column(Float, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
