"""Audit trail of sync runs."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from twinsync.storage.models import Base, UUIDMixin


class SyncType(StrEnum):
    """What triggered a sync run."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    AUTOMATIC = "automatic"


class SyncLogStatus(StrEnum):
    """Outcome recorded for a sync run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class SyncLog(Base, UUIDMixin):
    """One row per completed sync run. Never updated."""

    __tablename__ = "sync_log"
    __table_args__ = (Index("ix_sync_log_config_created", "config_id", "created_at"),)

    config_id: Mapped[str] = mapped_column(
        ForeignKey("connection_config.id", ondelete="CASCADE"),
        nullable=False,
    )
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False, default=SyncType.MANUAL)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    items_synced: Mapped[int | None] = mapped_column(Integer, nullable=True)
    items_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<SyncLog(config_id={self.config_id!r}, status={self.status!r}, items_synced={self.items_synced})>"
