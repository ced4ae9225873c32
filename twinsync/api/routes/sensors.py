"""API routes for sensors and their reading history."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from twinsync.api.auth import require_permission
from twinsync.dal.sensors import SensorReadingRepository, SensorRepository
from twinsync.exceptions import NotFoundError
from twinsync.storage import get_session
from twinsync.storage.entities import Sensor

router = APIRouter(prefix="/sensors", tags=["Sensors"])


class SensorResponse(BaseModel):
    id: str
    name: str
    type: str
    status: str
    last_reading: float | None
    last_reading_at: datetime | None
    twin_id: str | None
    created_at: datetime | None
    updated_at: datetime | None


class ReadingResponse(BaseModel):
    value: float
    recorded_at: datetime


def _serialize_sensor(sensor: Sensor) -> dict:
    return {
        "id": sensor.id,
        "name": sensor.name,
        "type": sensor.type,
        "status": sensor.status,
        "last_reading": sensor.last_reading,
        "last_reading_at": sensor.last_reading_at,
        "twin_id": sensor.twin_id,
        "created_at": sensor.created_at,
        "updated_at": sensor.updated_at,
    }


@router.get("", response_model=list[SensorResponse])
async def list_sensors(
    twin_id: str | None = None,
    type: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """List sensors, optionally filtered by twin or type."""
    async with get_session() as session:
        sensors = await SensorRepository(session).list_all(
            limit=limit,
            offset=offset,
            twin_id=twin_id,
            type=type,
        )
        return [_serialize_sensor(s) for s in sensors]


@router.get("/{sensor_id}", response_model=SensorResponse)
async def get_sensor(sensor_id: str):
    async with get_session() as session:
        sensor = await SensorRepository(session).get_by_id(sensor_id)
        if sensor is None:
            raise NotFoundError(f"Sensor {sensor_id} not found")
        return _serialize_sensor(sensor)


@router.get("/{sensor_id}/readings", response_model=list[ReadingResponse])
async def list_readings(sensor_id: str, limit: int = Query(100, ge=1, le=1000)):
    """Reading history of a sensor, newest first."""
    async with get_session() as session:
        if await SensorRepository(session).get_by_id(sensor_id) is None:
            raise NotFoundError(f"Sensor {sensor_id} not found")
        readings = await SensorReadingRepository(session).list_for_sensor(sensor_id, limit=limit)
        return [{"value": r.value, "recorded_at": r.recorded_at} for r in readings]


@router.delete(
    "/{sensor_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_permission("manage_assets"))],
)
async def delete_sensor(sensor_id: str) -> None:
    """Delete a sensor; its openHAB mapping is removed with it."""
    async with get_session() as session:
        deleted = await SensorRepository(session).delete(sensor_id)
        if not deleted:
            raise NotFoundError(f"Sensor {sensor_id} not found")
        await session.commit()
