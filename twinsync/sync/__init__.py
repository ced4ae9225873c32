"""Item mapping, sync and live feed."""

from twinsync.sync.classifier import DEFAULT_SENSOR_CATEGORY, classify
from twinsync.sync.engine import SyncEngine, SyncResult, SyncStatus, is_due
from twinsync.sync.feed import LiveFeed
from twinsync.sync.mapper import ItemMapper, MapAllResult

__all__ = [
    "DEFAULT_SENSOR_CATEGORY",
    "ItemMapper",
    "LiveFeed",
    "MapAllResult",
    "SyncEngine",
    "SyncResult",
    "SyncStatus",
    "classify",
    "is_due",
]
