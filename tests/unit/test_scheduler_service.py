"""Unit tests for SchedulerService.

Inline imports (ConnectionConfigStore, get_session, get_sync_engine) are
patched at their SOURCE modules, not at twinsync.scheduler.service.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tests.factories import ConnectionConfigFactory
from twinsync.exceptions import NotFoundError
from twinsync.scheduler.service import (
    RETENTION_JOB_ID,
    SchedulerService,
    _execute_openhab_sync,
    _execute_reading_cleanup,
    sync_job_id,
)
from twinsync.sync.engine import SyncResult, SyncStatus


@pytest.fixture(autouse=True)
def reset_singleton():
    """Reset the singleton between tests."""
    SchedulerService._instance = None
    yield
    SchedulerService._instance = None


@pytest.fixture
def mock_settings():
    s = MagicMock()
    s.scheduler_timezone = "UTC"
    s.scheduler_enabled = True
    s.twinsync_role = "all"
    s.reading_retention_days = 90
    return s


@pytest.fixture
def service(mock_settings):
    with patch("twinsync.scheduler.service.get_settings", return_value=mock_settings):
        svc = SchedulerService()
    svc._scheduler = MagicMock()
    svc._scheduler.get_job.return_value = None
    svc._scheduler.get_jobs.return_value = []
    return svc


def _patch_configs(configs=None, error=None):
    """Patch the DB lookup done by sync_jobs()."""
    session = AsyncMock()

    @asynccontextmanager
    async def _get_session():
        yield session

    store = MagicMock()
    store.list_enabled = AsyncMock(return_value=configs or [], side_effect=error)
    return (
        patch("twinsync.storage.get_session", _get_session),
        patch("twinsync.dal.connection_configs.ConnectionConfigStore", return_value=store),
    )


class TestSchedulerInit:
    def test_init_with_apscheduler(self, mock_settings):
        with patch("twinsync.scheduler.service.get_settings", return_value=mock_settings):
            svc = SchedulerService()
        assert svc._scheduler is not None
        assert svc.running is False

    def test_get_instance_none_before_start(self):
        assert SchedulerService.get_instance() is None

    def test_sync_job_id(self):
        assert sync_job_id("abc") == "openhab_sync:abc"


class TestSchedulerStart:
    async def test_start_when_role_api_skips(self, service, mock_settings):
        mock_settings.twinsync_role = "api"
        with patch("twinsync.scheduler.service.get_settings", return_value=mock_settings):
            await service.start()

        assert service.running is False
        service._scheduler.start.assert_not_called()

    async def test_start_when_disabled_skips(self, service, mock_settings):
        mock_settings.scheduler_enabled = False
        with patch("twinsync.scheduler.service.get_settings", return_value=mock_settings):
            await service.start()

        assert service.running is False

    async def test_start_loads_jobs_and_retention(self, service, mock_settings):
        session_patch, store_patch = _patch_configs([ConnectionConfigFactory()])
        with (
            patch("twinsync.scheduler.service.get_settings", return_value=mock_settings),
            session_patch,
            store_patch,
        ):
            await service.start()

        assert service.running is True
        assert SchedulerService.get_instance() is service
        job_ids = [call.kwargs["id"] for call in service._scheduler.add_job.call_args_list]
        assert RETENTION_JOB_ID in job_ids
        assert any(job_id.startswith("openhab_sync:") for job_id in job_ids)

    async def test_retention_disabled(self, service, mock_settings):
        mock_settings.reading_retention_days = 0
        session_patch, store_patch = _patch_configs([])
        with (
            patch("twinsync.scheduler.service.get_settings", return_value=mock_settings),
            session_patch,
            store_patch,
        ):
            await service.start()

        service._scheduler.add_job.assert_not_called()

    async def test_stop(self, service, mock_settings):
        session_patch, store_patch = _patch_configs([])
        with (
            patch("twinsync.scheduler.service.get_settings", return_value=mock_settings),
            session_patch,
            store_patch,
        ):
            await service.start()
        await service.stop()

        service._scheduler.shutdown.assert_called_once_with(wait=False)
        assert service.running is False
        assert SchedulerService.get_instance() is None


class TestSyncJobs:
    async def test_adds_job_per_enabled_config(self, service):
        config = ConnectionConfigFactory(poll_interval_seconds=60)
        session_patch, store_patch = _patch_configs([config])
        with session_patch, store_patch:
            await service.sync_jobs()

        kwargs = service._scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == f"openhab_sync:{config.id}"
        assert kwargs["args"] == [config.id]
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        assert kwargs["trigger"].interval == timedelta(seconds=60)

    async def test_unchanged_job_keeps_timer(self, service):
        config = ConnectionConfigFactory(poll_interval_seconds=60)
        job = MagicMock()
        job.trigger.interval = timedelta(seconds=60)
        service._scheduler.get_job.return_value = job
        session_patch, store_patch = _patch_configs([config])
        with session_patch, store_patch:
            await service.sync_jobs()

        job.reschedule.assert_not_called()
        service._scheduler.add_job.assert_not_called()

    async def test_changed_interval_reschedules(self, service):
        config = ConnectionConfigFactory(poll_interval_seconds=120)
        job = MagicMock()
        job.trigger.interval = timedelta(seconds=60)
        service._scheduler.get_job.return_value = job
        session_patch, store_patch = _patch_configs([config])
        with session_patch, store_patch:
            await service.sync_jobs()

        job.reschedule.assert_called_once()
        assert job.reschedule.call_args.args[0].interval == timedelta(seconds=120)

    async def test_stale_jobs_removed(self, service):
        stale = MagicMock()
        stale.id = "openhab_sync:gone"
        retention = MagicMock()
        retention.id = RETENTION_JOB_ID
        service._scheduler.get_jobs.return_value = [stale, retention]
        session_patch, store_patch = _patch_configs([])
        with session_patch, store_patch:
            await service.sync_jobs()

        stale.remove.assert_called_once()
        retention.remove.assert_not_called()

    async def test_db_failure_is_logged_not_raised(self, service):
        session_patch, store_patch = _patch_configs(error=RuntimeError("relation does not exist"))
        with session_patch, store_patch:
            await service.sync_jobs()

        service._scheduler.add_job.assert_not_called()


class TestExecuteJobs:
    async def test_sync_runs_scheduled(self):
        engine = MagicMock()
        engine.sync_config = AsyncMock(return_value=SyncResult(status=SyncStatus.SUCCESS))
        with patch("twinsync.sync.engine.get_sync_engine", return_value=engine):
            await _execute_openhab_sync("cfg-1")

        engine.sync_config.assert_awaited_once_with("cfg-1", "scheduled")

    async def test_deleted_config_reconciles_jobs(self):
        engine = MagicMock()
        engine.sync_config = AsyncMock(side_effect=NotFoundError("gone"))
        scheduler = MagicMock()
        scheduler.sync_jobs = AsyncMock()
        SchedulerService._instance = scheduler
        with patch("twinsync.sync.engine.get_sync_engine", return_value=engine):
            await _execute_openhab_sync("cfg-1")

        scheduler.sync_jobs.assert_awaited_once()

    async def test_unexpected_error_does_not_propagate(self):
        engine = MagicMock()
        engine.sync_config = AsyncMock(side_effect=RuntimeError("boom"))
        with patch("twinsync.sync.engine.get_sync_engine", return_value=engine):
            await _execute_openhab_sync("cfg-1")

    async def test_reading_cleanup(self):
        session = AsyncMock()

        @asynccontextmanager
        async def _get_session():
            yield session

        repo = MagicMock()
        repo.delete_older_than = AsyncMock(return_value=12)
        with (
            patch("twinsync.storage.get_session", _get_session),
            patch("twinsync.dal.sensors.SensorReadingRepository", return_value=repo),
        ):
            await _execute_reading_cleanup(30)

        repo.delete_older_than.assert_awaited_once()
        session.commit.assert_awaited_once()
