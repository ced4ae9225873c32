"""Integration tests for the data layer against real PostgreSQL.

Uses testcontainers to spin up a real PostgreSQL instance.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tests.mocks import OpenHABServer
from twinsync.dal.connection_configs import ConnectionConfigStore
from twinsync.dal.mappings import SensorMappingRepository
from twinsync.dal.sensors import SensorReadingRepository, SensorRepository
from twinsync.dal.sync_logs import SyncLogRepository
from twinsync.exceptions import DuplicateMappingError
from twinsync.openhab.client import OpenHABClient
from twinsync.openhab.models import BearerCredential, ExternalItem
from twinsync.realtime import ChangeType
from twinsync.storage.entities import ConnectionConfig, Sensor, SensorMapping, SensorReading, SyncLog
from twinsync.sync.engine import SyncEngine, SyncStatus
from twinsync.sync.mapper import ItemMapper

pytestmark = [
    pytest.mark.integration,
    pytest.mark.requires_postgres,
    pytest.mark.asyncio(loop_scope="session"),
]


def _item(name: str, type_: str = "Number:Temperature", label: str | None = None) -> ExternalItem:
    return ExternalItem.model_validate({"name": name, "type": type_, "label": label})


async def _count(session: AsyncSession, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _save_config(session: AsyncSession, settings, owner_id: str = "owner-1", **data) -> ConnectionConfig:
    return await ConnectionConfigStore(session, settings).save(
        owner_id, {"base_url": "http://openhab.local:8080", **data}
    )


class TestConnectionConfigStoreDB:
    async def test_save_is_an_upsert(self, integration_session, integration_settings):
        created = await _save_config(
            integration_session, integration_settings, credential="tok", poll_interval_seconds=60
        )
        updated = await _save_config(integration_session, integration_settings, enabled=False)

        assert updated.id == created.id
        assert updated.poll_interval_seconds == 60
        assert updated.enabled is False
        assert await _count(integration_session, ConnectionConfig) == 1

        store = ConnectionConfigStore(integration_session, integration_settings)
        credential = store.credential_for(await store.load("owner-1"))
        assert isinstance(credential, BearerCredential)
        assert credential.token.get_secret_value() == "tok"

    async def test_credential_stored_encrypted(self, integration_session, integration_settings):
        await _save_config(integration_session, integration_settings, credential="user:pa:ss")

        stored = (
            await integration_session.execute(select(ConnectionConfig.credential_encrypted))
        ).scalar_one()
        assert stored is not None
        assert "pa:ss" not in stored

    async def test_poll_interval_clamped_on_save(self, integration_session, integration_settings):
        config = await _save_config(integration_session, integration_settings, poll_interval_seconds=5)

        assert config.poll_interval_seconds == 10

    @pytest.mark.parametrize("interval", [5, 3601])
    async def test_poll_interval_range_enforced_by_database(self, integration_session, interval):
        with pytest.raises(IntegrityError, match="ck_connection_config_poll_interval_range"):
            async with integration_session.begin_nested():
                integration_session.add(
                    ConnectionConfig(
                        owner_id="raw", base_url="http://openhab.local:8080", poll_interval_seconds=interval
                    )
                )
                await integration_session.flush()

    async def test_list_enabled(self, integration_session, integration_settings):
        await _save_config(integration_session, integration_settings, owner_id="a")
        await _save_config(integration_session, integration_settings, owner_id="b", enabled=False)

        enabled = await ConnectionConfigStore(integration_session, integration_settings).list_enabled()

        assert [c.owner_id for c in enabled] == ["a"]


class TestItemMapperDB:
    async def test_map_one(self, integration_session, integration_settings):
        config = await _save_config(integration_session, integration_settings)

        mapping = await ItemMapper(integration_session).map_one(
            config, _item("Bathroom_Humidity", "Number:Dimensionless", "Bathroom"), twin_id="twin-1"
        )

        sensor = await SensorRepository(integration_session).get_by_id(mapping.sensor_id)
        assert sensor.name == "Bathroom"
        assert sensor.type == "humidity"
        assert sensor.twin_id == "twin-1"
        assert mapping.sync_enabled is True

    async def test_duplicate_item_rejected(self, integration_session, integration_settings):
        config = await _save_config(integration_session, integration_settings)
        mapper = ItemMapper(integration_session)
        await mapper.map_one(config, _item("LivingRoom_Temperature"))

        with pytest.raises(DuplicateMappingError):
            await mapper.map_one(config, _item("LivingRoom_Temperature"))

        assert await _count(integration_session, Sensor) == 1

    async def test_constraint_violation_rolls_back_sensor(self, integration_session, integration_settings):
        config = await _save_config(integration_session, integration_settings)
        mapper = ItemMapper(integration_session)
        await mapper.map_one(config, _item("LivingRoom_Temperature"))

        # Skip the pre-check so the unique constraint itself fires
        mapper.mapping_repo.get_by_item = AsyncMock(return_value=None)
        with pytest.raises(DuplicateMappingError):
            await mapper.map_one(config, _item("LivingRoom_Temperature"))

        assert await _count(integration_session, Sensor) == 1
        assert await _count(integration_session, SensorMapping) == 1

    async def test_map_all_continues_past_failures(self, integration_session, integration_settings):
        config = await _save_config(integration_session, integration_settings)

        result = await ItemMapper(integration_session).map_all(
            config,
            [_item("A_Temp"), _item("A_Temp"), _item("B_Pressure", "Number:Pressure")],
        )

        assert (result.succeeded, result.failed) == (2, 1)
        assert result.errors[0].startswith("A_Temp:")
        names = await SensorMappingRepository(integration_session).mapped_item_names(config.id)
        assert names == {"A_Temp", "B_Pressure"}

    async def test_same_item_under_two_connections(self, integration_session, integration_settings):
        first = await _save_config(integration_session, integration_settings, owner_id="a")
        second = await _save_config(integration_session, integration_settings, owner_id="b")
        mapper = ItemMapper(integration_session)

        await mapper.map_one(first, _item("LivingRoom_Temperature"))
        await mapper.map_one(second, _item("LivingRoom_Temperature"))

        assert await _count(integration_session, SensorMapping) == 2


class TestCascadesDB:
    async def test_deleting_sensor_removes_mapping(self, integration_session, integration_settings):
        config = await _save_config(integration_session, integration_settings)
        mapping = await ItemMapper(integration_session).map_one(config, _item("LivingRoom_Temperature"))

        deleted = await SensorRepository(integration_session).delete(mapping.sensor_id)

        assert deleted is True
        assert await _count(integration_session, SensorMapping) == 0

    async def test_deleting_config_cascades_in_database(self, integration_session, integration_settings):
        config = await _save_config(integration_session, integration_settings)
        await ItemMapper(integration_session).map_one(config, _item("LivingRoom_Temperature"))
        await integration_session.flush()

        await integration_session.execute(delete(ConnectionConfig).where(ConnectionConfig.id == config.id))

        assert await _count(integration_session, SensorMapping) == 0
        # The sensor itself outlives its mapping
        assert await _count(integration_session, Sensor) == 1


class TestHistoryDB:
    async def test_sync_log_newest_first(self, integration_session, integration_settings):
        config = await _save_config(integration_session, integration_settings)
        repo = SyncLogRepository(integration_session)
        base = datetime(2026, 5, 1, tzinfo=UTC)
        for minutes, status in ((0, "success"), (10, "partial"), (5, "error")):
            await repo.create(
                {
                    "config_id": config.id,
                    "sync_type": "scheduled",
                    "status": status,
                    "created_at": base + timedelta(minutes=minutes),
                }
            )

        logs = await repo.list_recent(config.id, limit=2)

        assert [log.status for log in logs] == ["partial", "error"]

    async def test_reading_retention(self, integration_session, integration_settings):
        config = await _save_config(integration_session, integration_settings)
        mapping = await ItemMapper(integration_session).map_one(config, _item("LivingRoom_Temperature"))
        repo = SensorReadingRepository(integration_session)
        now = datetime.now(UTC)
        await repo.append(mapping.sensor_id, 20.0, now - timedelta(days=100))
        await repo.append(mapping.sensor_id, 21.0, now)

        removed = await repo.delete_older_than(now - timedelta(days=90))

        assert removed == 1
        assert [r.value for r in await repo.list_for_sensor(mapping.sensor_id)] == [21.0]


class TestCommitHooksDB:
    async def test_committed_changes_published(self, session_factory, integration_settings, change_broadcaster):
        async with session_factory() as session:
            config = await _save_config(session, integration_settings, credential="tok")
            await ItemMapper(session).map_one(config, _item("LivingRoom_Temperature"))
            assert change_broadcaster.latest_seq == 0
            await session.commit()

        events = change_broadcaster.events_since(0)
        assert [(e.table, e.event_type) for e in events] == [
            ("connection_config", ChangeType.INSERT),
            ("sensor", ChangeType.INSERT),
            ("sensor_mapping", ChangeType.INSERT),
        ]
        assert "credential_encrypted" not in events[0].row
        assert events[0].row["owner_id"] == "owner-1"

    async def test_rolled_back_changes_discarded(self, session_factory, integration_settings, change_broadcaster):
        async with session_factory() as session:
            await _save_config(session, integration_settings)
            await session.rollback()

        assert change_broadcaster.events_since(0) == []

    async def test_failed_savepoint_discarded(self, session_factory, integration_settings, change_broadcaster):
        async with session_factory() as session:
            config = await _save_config(session, integration_settings)
            mapper = ItemMapper(session)
            await mapper.map_one(config, _item("LivingRoom_Temperature"))
            mapper.mapping_repo.get_by_item = AsyncMock(return_value=None)
            with pytest.raises(DuplicateMappingError):
                await mapper.map_one(config, _item("LivingRoom_Temperature"))
            await session.commit()

        sensor_inserts = [e for e in change_broadcaster.events_since(0) if e.table == "sensor"]
        assert len(sensor_inserts) == 1

    async def test_delete_published(self, session_factory, integration_settings, change_broadcaster):
        async with session_factory() as session:
            config = await _save_config(session, integration_settings)
            mapping = await ItemMapper(session).map_one(config, _item("LivingRoom_Temperature"))
            await session.commit()
        seen = change_broadcaster.latest_seq

        async with session_factory() as session:
            await SensorRepository(session).delete(mapping.sensor_id)
            await session.commit()

        events = change_broadcaster.events_since(seen)
        assert [(e.table, e.event_type) for e in events] == [
            ("sensor_mapping", ChangeType.DELETE),
            ("sensor", ChangeType.DELETE),
        ]


class TestSyncEngineDB:
    async def test_sync_writes_readings_log_and_timestamp(self, session_factory, integration_settings):
        server = OpenHABServer()
        async with session_factory() as session:
            config = await _save_config(session, integration_settings)
            await ItemMapper(session).map_all(
                config,
                [
                    _item("LivingRoom_Temperature"),
                    _item("Bathroom_Humidity", "Number:Dimensionless"),
                    _item("Boiler_Pressure", "Number:Pressure"),
                ],
            )
            await session.commit()

        engine = SyncEngine(
            session_factory=session_factory,
            client_factory=lambda base_url, credential: OpenHABClient(
                base_url, credential, timeout=5, transport=server.transport()
            ),
            settings=integration_settings,
        )
        result = await engine.sync_once(config, "manual")

        assert result.status == SyncStatus.PARTIAL
        assert (result.synced, result.total) == (2, 3)

        async with session_factory() as session:
            readings = {
                s.name: s.last_reading
                for s in (await session.execute(select(Sensor))).scalars()
            }
            assert readings["LivingRoom_Temperature"] == 21.5
            assert readings["Bathroom_Humidity"] == 64.0
            assert readings["Boiler_Pressure"] is None
            assert await _count(session, SensorReading) == 2

            logs = await SyncLogRepository(session).list_recent(config.id)
            assert [(log.status, log.items_synced, log.items_total) for log in logs] == [("partial", 2, 3)]

            stored = await ConnectionConfigStore(session, integration_settings).load("owner-1")
            assert stored.last_sync_at is not None

    async def test_unreachable_server_logs_error(self, session_factory, integration_settings):
        import httpx

        from tests.mocks import transport_raising

        async with session_factory() as session:
            config = await _save_config(session, integration_settings)
            await ItemMapper(session).map_one(config, _item("LivingRoom_Temperature"))
            await session.commit()

        transport = transport_raising(lambda request: httpx.ConnectError("refused", request=request))
        engine = SyncEngine(
            session_factory=session_factory,
            client_factory=lambda base_url, credential: OpenHABClient(
                base_url, credential, timeout=5, transport=transport
            ),
            settings=integration_settings,
        )
        result = await engine.sync_once(config, "scheduled")

        assert result.status == SyncStatus.ERROR
        async with session_factory() as session:
            log = (await session.execute(select(SyncLog))).scalar_one()
            assert log.status == "error"
            assert "Cannot connect" in log.error_message
            stored = await ConnectionConfigStore(session, integration_settings).load("owner-1")
            assert stored.last_sync_at is None
