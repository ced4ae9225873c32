"""openHAB connection configuration entity.

One row per owner. The credential is stored Fernet-encrypted; see
twinsync.dal.connection_configs for the encrypt/decrypt helpers.
"""

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from twinsync.storage.models import Base, TimestampMixin, UUIDMixin

MIN_POLL_INTERVAL_SECONDS = 10
MAX_POLL_INTERVAL_SECONDS = 3600
DEFAULT_POLL_INTERVAL_SECONDS = 30


class ConnectionConfig(Base, UUIDMixin, TimestampMixin):
    """How to reach one owner's openHAB server and how often to poll it."""

    __tablename__ = "connection_config"
    __table_args__ = (
        CheckConstraint(
            f"poll_interval_seconds BETWEEN {MIN_POLL_INTERVAL_SECONDS} AND {MAX_POLL_INTERVAL_SECONDS}",
            name="poll_interval_range",
        ),
    )

    owner_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        doc="Owner (user/tenant) this connection belongs to",
    )
    base_url: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        doc="openHAB base URL without trailing slash",
    )
    credential_encrypted: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        doc="API token or user:password, Fernet-encrypted (null = no auth)",
    )
    poll_interval_seconds: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_POLL_INTERVAL_SECONDS,
        doc="Scheduled sync period in seconds (10..3600)",
    )
    enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        doc="Whether scheduled and manual syncs run for this connection",
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="When the last non-error sync completed",
    )

    def __repr__(self) -> str:
        return (
            f"<ConnectionConfig(owner_id={self.owner_id!r}, base_url={self.base_url!r}, "
            f"enabled={self.enabled})>"
        )
