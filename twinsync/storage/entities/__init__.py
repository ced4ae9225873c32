"""Database entity models."""

from twinsync.storage.entities.connection_config import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    MAX_POLL_INTERVAL_SECONDS,
    MIN_POLL_INTERVAL_SECONDS,
    ConnectionConfig,
)
from twinsync.storage.entities.sensor import Sensor, SensorCategory
from twinsync.storage.entities.sensor_mapping import SensorMapping
from twinsync.storage.entities.sensor_reading import SensorReading
from twinsync.storage.entities.sync_log import SyncLog, SyncLogStatus, SyncType

__all__ = [
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "MAX_POLL_INTERVAL_SECONDS",
    "MIN_POLL_INTERVAL_SECONDS",
    "ConnectionConfig",
    "Sensor",
    "SensorCategory",
    "SensorMapping",
    "SensorReading",
    "SyncLog",
    "SyncLogStatus",
    "SyncType",
]
