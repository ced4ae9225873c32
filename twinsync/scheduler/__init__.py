"""Periodic job scheduling."""

from twinsync.scheduler.service import SchedulerService, sync_job_id

__all__ = ["SchedulerService", "sync_job_id"]
