"""Sensor and sensor reading repositories."""

from datetime import datetime

from sqlalchemy import delete as sa_delete
from sqlalchemy import select

from twinsync.dal.base import BaseRepository
from twinsync.storage.entities import Sensor, SensorMapping, SensorReading


class SensorRepository(BaseRepository[Sensor]):
    """CRUD for sensors."""

    model = Sensor
    order_by_field = "name"

    async def record_reading(self, sensor: Sensor, value: float, at: datetime) -> None:
        """Set the sensor's latest value. Only the sync engine calls this."""
        sensor.last_reading = value
        sensor.last_reading_at = at
        await self.session.flush()

    async def delete(self, id: str) -> bool:
        """Delete a sensor together with the mapping that targets it.

        The mapping row is removed through the ORM first so that its
        deletion is published like any other change; the foreign key
        cascade covers rows deleted outside the ORM.
        """
        sensor = await self.get_by_id(id)
        if sensor is None:
            return False

        result = await self.session.execute(
            select(SensorMapping).where(SensorMapping.sensor_id == id)
        )
        for mapping in result.scalars().all():
            await self.session.delete(mapping)
        # No relationship() links the two, so order the deletes by hand
        await self.session.flush()

        await self.session.delete(sensor)
        await self.session.flush()
        return True


class SensorReadingRepository(BaseRepository[SensorReading]):
    """Append-only reading history."""

    model = SensorReading
    order_by_field = "recorded_at"

    async def append(self, sensor_id: str, value: float, recorded_at: datetime) -> SensorReading:
        reading = SensorReading(sensor_id=sensor_id, value=value, recorded_at=recorded_at)
        self.session.add(reading)
        await self.session.flush()
        return reading

    async def list_for_sensor(self, sensor_id: str, limit: int = 100) -> list[SensorReading]:
        """Most recent readings first."""
        result = await self.session.execute(
            select(SensorReading)
            .where(SensorReading.sensor_id == sensor_id)
            .order_by(SensorReading.recorded_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Drop readings recorded before cutoff. Returns the row count."""
        result = await self.session.execute(
            sa_delete(SensorReading).where(SensorReading.recorded_at < cutoff)
        )
        return result.rowcount or 0
