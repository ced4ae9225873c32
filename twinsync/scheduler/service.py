"""APScheduler-based scheduler for periodic openHAB syncs.

Uses APScheduler 3.x with AsyncIOScheduler. One interval job per enabled
connection is reconciled from the connection_config table on startup and
after any configuration change.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from twinsync.settings import get_settings

logger = logging.getLogger(__name__)

SYNC_JOB_PREFIX = "openhab_sync:"
RETENTION_JOB_ID = "retention:nightly_cleanup"


def sync_job_id(config_id: str) -> str:
    return f"{SYNC_JOB_PREFIX}{config_id}"


class SchedulerService:
    """Keeps one APScheduler interval job per enabled openHAB connection.

    Lifecycle:
        scheduler = SchedulerService()
        await scheduler.start()    # Called in lifespan startup
        ...
        await scheduler.stop()     # Called in lifespan shutdown

    Job sync:
        After saving a connection via the API, call
        scheduler.sync_jobs() to reconcile APScheduler with the DB.
    """

    _instance: SchedulerService | None = None

    def __init__(self) -> None:
        settings = get_settings()
        self._scheduler = AsyncIOScheduler(timezone=settings.scheduler_timezone)
        self._running = False

    @classmethod
    def get_instance(cls) -> SchedulerService | None:
        """Get the singleton scheduler instance (None if not started)."""
        return cls._instance

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduler and load jobs from the database.

        Only starts when TWINSYNC_ROLE is 'all' or 'scheduler', so API-only
        replicas never run sync jobs.
        """
        settings = get_settings()

        if settings.twinsync_role == "api":
            logger.info(
                "Scheduler skipped: TWINSYNC_ROLE=%s (only 'all' or 'scheduler' run jobs)",
                settings.twinsync_role,
            )
            return

        if not settings.scheduler_enabled:
            logger.info("Scheduler disabled via settings")
            return

        self._scheduler.start()
        self._running = True
        SchedulerService._instance = self

        await self.sync_jobs()
        self._schedule_reading_cleanup(settings.reading_retention_days)

        logger.info("Scheduler started")

    async def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            SchedulerService._instance = None
            logger.info("Scheduler stopped")

    def _schedule_reading_cleanup(self, retention_days: int) -> None:
        """Register the nightly sensor_reading retention job."""
        if retention_days <= 0:
            logger.info("Sensor reading retention disabled (keeping all history)")
            return

        self._scheduler.add_job(
            _execute_reading_cleanup,
            trigger=CronTrigger(hour=3, minute=30),
            id=RETENTION_JOB_ID,
            args=[retention_days],
            replace_existing=True,
            name="retention:sensor_reading_cleanup",
            misfire_grace_time=600,
        )
        logger.info("Nightly sensor reading cleanup scheduled at 03:30 (%d days)", retention_days)

    async def sync_jobs(self) -> None:
        """Reconcile sync jobs with the enabled connections in the DB.

        Adds jobs for new connections, reschedules connections whose poll
        interval changed, and removes jobs of disabled or deleted ones.
        Unchanged jobs keep their timer phase.
        """
        from twinsync.dal.connection_configs import ConnectionConfigStore
        from twinsync.storage import get_session

        try:
            async with get_session() as session:
                configs = await ConnectionConfigStore(session).list_enabled()
        except Exception as e:
            # Table may not exist yet (migration not run)
            logger.warning("Could not load openHAB connections: %s", e)
            return

        expected_ids = set()

        for config in configs:
            job_id = sync_job_id(config.id)
            expected_ids.add(job_id)
            interval = timedelta(seconds=config.poll_interval_seconds)

            existing = self._scheduler.get_job(job_id)
            if existing is not None:
                if getattr(existing.trigger, "interval", None) != interval:
                    existing.reschedule(IntervalTrigger(seconds=config.poll_interval_seconds))
                    logger.info(
                        "Rescheduled sync job %s every %ds", job_id, config.poll_interval_seconds
                    )
                continue

            self._scheduler.add_job(
                _execute_openhab_sync,
                trigger=IntervalTrigger(seconds=config.poll_interval_seconds),
                id=job_id,
                args=[config.id],
                replace_existing=True,
                name=f"openhab_sync:{config.owner_id}",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=max(1, config.poll_interval_seconds // 2),
            )
            logger.info("Added sync job %s every %ds", job_id, config.poll_interval_seconds)

        for job in self._scheduler.get_jobs():
            if job.id.startswith(SYNC_JOB_PREFIX) and job.id not in expected_ids:
                job.remove()
                logger.info("Removed stale sync job %s", job.id)


async def _execute_openhab_sync(config_id: str) -> None:
    """Run a scheduled sync for one connection.

    Called by APScheduler on every interval tick. Outcomes are visible
    through the sync history; nothing propagates to the scheduler.
    """
    from twinsync.exceptions import NotFoundError
    from twinsync.storage.entities import SyncType
    from twinsync.sync.engine import get_sync_engine

    try:
        result = await get_sync_engine().sync_config(config_id, SyncType.SCHEDULED)
    except NotFoundError:
        logger.info("Connection %s no longer exists; sync job will be removed", config_id)
        scheduler = SchedulerService.get_instance()
        if scheduler is not None:
            await scheduler.sync_jobs()
        return
    except Exception as e:
        logger.exception("Scheduled openHAB sync for %s failed: %s", config_id, e)
        return

    logger.debug("Scheduled sync for %s finished: %s", config_id, result.status)


async def _execute_reading_cleanup(retention_days: int) -> None:
    """Delete sensor readings older than the retention window."""
    from twinsync.dal.sensors import SensorReadingRepository
    from twinsync.storage import get_session

    cutoff = datetime.now(UTC) - timedelta(days=retention_days)
    logger.info("Starting nightly sensor reading cleanup (before %s)", cutoff.isoformat())

    try:
        async with get_session() as session:
            deleted = await SensorReadingRepository(session).delete_older_than(cutoff)
            await session.commit()
        logger.info("Sensor reading cleanup complete: %d rows deleted", deleted)
    except Exception as e:
        logger.exception("Sensor reading cleanup failed: %s", e)
