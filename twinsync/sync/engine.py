"""Sync engine: reconcile mapped openHAB items into sensors.

One pass per connection reads every sync-enabled mapping concurrently,
writes the parsed values, then appends a single sync_log row and moves
``last_sync_at`` forward. Runs for the same connection never overlap; a
request that arrives while one is in flight is dropped.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from twinsync.dal.connection_configs import ConnectionConfigStore
from twinsync.dal.mappings import SensorMappingRepository
from twinsync.dal.sensors import SensorReadingRepository, SensorRepository
from twinsync.dal.sync_logs import SyncLogRepository
from twinsync.exceptions import NotFoundError, OpenHABConnectionError, SyncError, ValidationError
from twinsync.openhab.client import OpenHABClient
from twinsync.openhab.models import Credential, is_sentinel_state, parse_numeric_state
from twinsync.settings import Settings, get_settings
from twinsync.storage.entities import ConnectionConfig, SensorMapping, SyncLogStatus, SyncType

logger = logging.getLogger(__name__)

# Fraction of the poll interval that must pass before an automatic sync
# may run again.
DUE_FRACTION = 0.9

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
ClientFactory = Callable[[str, Credential], OpenHABClient]


class SyncStatus(StrEnum):
    """Outcome of a sync request."""

    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"
    DISABLED = "disabled"
    SKIPPED = "skipped"
    NOOP = "noop"


class SyncResult(BaseModel):
    """What a sync request did."""

    status: SyncStatus
    synced: int = 0
    total: int = 0
    errors: list[str] = Field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (SyncStatus.SUCCESS, SyncStatus.PARTIAL, SyncStatus.NOOP)


@dataclass
class ItemRead:
    """Result of reading one mapped item: a state or an error."""

    mapping: SensorMapping
    state: str | None = None
    error: Exception | None = None


def _default_session_factory() -> AbstractAsyncContextManager[AsyncSession]:
    # Resolved per call so the storage accessors can be swapped at runtime
    from twinsync import storage

    return storage.get_session()


def is_due(config: ConnectionConfig, now: datetime | None = None) -> bool:
    """Whether an automatic sync may run now.

    Due when never synced, or once 90% of the poll interval has elapsed
    since the last successful sync.
    """
    allowed_at = next_sync_allowed_at(config)
    if allowed_at is None:
        return True
    return (now or datetime.now(UTC)) >= allowed_at


def next_sync_allowed_at(config: ConnectionConfig) -> datetime | None:
    if config.last_sync_at is None:
        return None
    return config.last_sync_at + timedelta(seconds=config.poll_interval_seconds * DUE_FRACTION)


class SyncEngine:
    """Runs sync passes and tracks which connections are mid-sync."""

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        client_factory: ClientFactory | None = None,
        settings: Settings | None = None,
    ):
        self._session_factory = session_factory or _default_session_factory
        self._settings = settings
        self._client_factory = client_factory or self._make_client
        self._in_flight: set[str] = set()

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def _make_client(self, base_url: str, credential: Credential) -> OpenHABClient:
        return OpenHABClient(base_url, credential, timeout=self.settings.openhab_timeout_seconds)

    def is_syncing(self, config_id: str) -> bool:
        return config_id in self._in_flight

    async def sync_config(self, config_id: str, sync_type: str = SyncType.SCHEDULED) -> SyncResult:
        """Load a connection by id and sync it.

        Raises:
            NotFoundError: If the connection no longer exists.
        """
        async with self._session_factory() as session:
            config = await ConnectionConfigStore(session, self._settings).get_by_id(config_id)
        if config is None:
            raise NotFoundError(f"Connection {config_id} not found")
        return await self.sync_once(config, sync_type)

    async def sync_once(
        self,
        config: ConnectionConfig,
        sync_type: str = SyncType.MANUAL,
    ) -> SyncResult:
        """Run one sync pass for a connection.

        Never raises; failures are logged, recorded in sync_log where
        possible, and returned as an error result.
        """
        if not config.enabled:
            return SyncResult(
                status=SyncStatus.DISABLED,
                message="Sync is disabled for this connection",
            )

        # Check and claim without an await in between
        if config.id in self._in_flight:
            logger.info("Sync for config %s already running; dropping %s request", config.id, sync_type)
            return SyncResult(
                status=SyncStatus.SKIPPED,
                message="A sync is already running for this connection",
            )
        self._in_flight.add(config.id)

        try:
            return await self._run(config, sync_type)
        except Exception as e:
            logger.exception("Sync for config %s failed", config.id)
            error = SyncError(f"Sync failed: {e}", config_id=config.id)
            await self._record_failure(config, sync_type, str(error))
            return SyncResult(status=SyncStatus.ERROR, errors=[str(e)], message=str(error))
        finally:
            self._in_flight.discard(config.id)

    async def _run(self, config: ConnectionConfig, sync_type: str) -> SyncResult:
        async with self._session_factory() as session:
            store = ConnectionConfigStore(session, self._settings)
            mapping_repo = SensorMappingRepository(session)
            sensor_repo = SensorRepository(session)
            reading_repo = SensorReadingRepository(session)
            log_repo = SyncLogRepository(session)

            mappings = await mapping_repo.list_for_config(config.id, sync_enabled_only=True)
            if not mappings:
                return SyncResult(status=SyncStatus.NOOP, message="No items configured for sync")

            credential = store.credential_for(config)
            async with self._client_factory(config.base_url, credential) as client:
                reads = await self._read_all(client, mappings)

            total = len(mappings)
            now = datetime.now(UTC)
            errors: list[str] = []
            connection_failures = 0
            synced = 0

            for read in reads:
                item_name = read.mapping.external_item_name
                if read.error is not None:
                    errors.append(f"{item_name}: {read.error}")
                    if isinstance(read.error, OpenHABConnectionError):
                        connection_failures += 1
                    continue
                if is_sentinel_state(read.state):
                    continue
                value = parse_numeric_state(read.state)
                if value is None:
                    errors.append(f"{item_name}: non-numeric state {read.state!r}")
                    continue
                sensor = await sensor_repo.get_by_id(read.mapping.sensor_id)
                if sensor is None:
                    errors.append(f"{item_name}: target sensor no longer exists")
                    continue

                await sensor_repo.record_reading(sensor, value, now)
                await reading_repo.append(sensor.id, value, now)
                await mapping_repo.record_value(read.mapping, read.state, now)
                synced += 1

            if connection_failures == total:
                message = "; ".join(errors)
                await log_repo.append(
                    config.id,
                    sync_type=sync_type,
                    status=SyncLogStatus.ERROR,
                    items_synced=0,
                    items_total=total,
                    error_message=message,
                )
                await session.commit()
                logger.warning("Sync for config %s failed: every item read failed", config.id)
                return SyncResult(
                    status=SyncStatus.ERROR,
                    total=total,
                    errors=errors,
                    message=f"Sync failed: {message}",
                )

            status = SyncStatus.SUCCESS if synced == total else SyncStatus.PARTIAL
            await log_repo.append(
                config.id,
                sync_type=sync_type,
                status=SyncLogStatus(status.value),
                items_synced=synced,
                items_total=total,
                error_message="; ".join(errors) or None,
            )
            await store.mark_synced(config.owner_id, now)
            await session.commit()

        logger.info(
            "Synced %d/%d openHAB items for config %s (%s, %s)",
            synced,
            total,
            config.id,
            sync_type,
            status,
        )
        return SyncResult(
            status=status,
            synced=synced,
            total=total,
            errors=errors,
            message=f"Synced {synced} of {total} items",
        )

    async def _read_all(self, client: OpenHABClient, mappings: list[SensorMapping]) -> list[ItemRead]:
        semaphore = asyncio.Semaphore(self.settings.sync_max_concurrency)

        async def read_one(mapping: SensorMapping) -> ItemRead:
            async with semaphore:
                try:
                    state = await client.read_item_state(mapping.external_item_name)
                except (OpenHABConnectionError, ValidationError) as e:
                    return ItemRead(mapping=mapping, error=e)
                return ItemRead(mapping=mapping, state=state)

        return list(await asyncio.gather(*(read_one(m) for m in mappings)))

    async def _record_failure(
        self,
        config: ConnectionConfig,
        sync_type: str,
        message: str,
    ) -> None:
        try:
            async with self._session_factory() as session:
                await SyncLogRepository(session).append(
                    config.id,
                    sync_type=sync_type,
                    status=SyncLogStatus.ERROR,
                    items_synced=0,
                    error_message=message,
                )
                await session.commit()
        except Exception:
            logger.exception("Could not record failed sync for config %s", config.id)


_sync_engine: SyncEngine | None = None


def get_sync_engine() -> SyncEngine:
    """Process-wide engine; the API and the scheduler share its in-flight set."""
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = SyncEngine()
    return _sync_engine


def reset_sync_engine() -> None:
    global _sync_engine
    _sync_engine = None


__all__ = [
    "DUE_FRACTION",
    "ItemRead",
    "SyncEngine",
    "SyncResult",
    "SyncStatus",
    "get_sync_engine",
    "is_due",
    "next_sync_allowed_at",
    "reset_sync_engine",
]
