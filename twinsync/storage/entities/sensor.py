"""Sensor entity: an internal measurement point of a digital twin."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from twinsync.storage.models import Base, TimestampMixin, UUIDMixin


class SensorCategory(StrEnum):
    """Physical quantity a sensor measures."""

    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    PRESSURE = "pressure"
    FLOW = "flow"
    AIR_QUALITY = "air_quality"
    VIBRATION = "vibration"


class Sensor(Base, UUIDMixin, TimestampMixin):
    """An internal sensor record.

    last_reading and last_reading_at are owned by the sync engine.
    """

    __tablename__ = "sensor"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Display name",
    )
    type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=SensorCategory.TEMPERATURE,
        doc="SensorCategory value",
    )
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="online",
        doc="Operational status (online, offline, ...)",
    )
    last_reading: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
        doc="Most recent numeric value",
    )
    last_reading_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="When last_reading was written",
    )
    twin_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        doc="Optional digital twin this sensor belongs to",
    )

    def __repr__(self) -> str:
        return f"<Sensor(name={self.name!r}, type={self.type!r}, last_reading={self.last_reading})>"
