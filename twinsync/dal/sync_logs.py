"""Sync log repository (append-only)."""

from sqlalchemy import select

from twinsync.dal.base import BaseRepository
from twinsync.storage.entities import SyncLog

DEFAULT_HISTORY_LIMIT = 20


class SyncLogRepository(BaseRepository[SyncLog]):
    """Append and query sync audit entries."""

    model = SyncLog
    order_by_field = "created_at"

    async def append(
        self,
        config_id: str,
        *,
        sync_type: str,
        status: str,
        items_synced: int | None = None,
        items_total: int | None = None,
        error_message: str | None = None,
    ) -> SyncLog:
        log = SyncLog(
            config_id=config_id,
            sync_type=sync_type,
            status=status,
            items_synced=items_synced,
            items_total=items_total,
            error_message=error_message,
        )
        self.session.add(log)
        await self.session.flush()
        return log

    async def list_recent(self, config_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> list[SyncLog]:
        """Most recent entries first."""
        result = await self.session.execute(
            select(SyncLog)
            .where(SyncLog.config_id == config_id)
            .order_by(SyncLog.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
