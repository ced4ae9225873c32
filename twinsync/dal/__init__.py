"""Data access layer."""

from twinsync.dal.connection_configs import ConnectionConfigInput, ConnectionConfigStore
from twinsync.dal.mappings import SensorMappingRepository
from twinsync.dal.sensors import SensorReadingRepository, SensorRepository
from twinsync.dal.sync_logs import SyncLogRepository

__all__ = [
    "ConnectionConfigInput",
    "ConnectionConfigStore",
    "SensorMappingRepository",
    "SensorReadingRepository",
    "SensorRepository",
    "SyncLogRepository",
]
