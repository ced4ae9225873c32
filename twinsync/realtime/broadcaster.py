"""In-process change broadcaster.

Committed row changes are published as ChangeEvents with a monotonically
increasing sequence number. Recent events are kept in a ring buffer so a
reconnecting subscriber can resume from the last sequence it saw without
receiving anything twice.

Architecture:
    commit hooks  -->  ChangeBroadcaster.publish()  -->  asyncio.Queue per subscription
                                                   -->  SSE endpoint / RowCache
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Iterable
from contextlib import suppress
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class ChangeType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """One committed row change."""

    seq: int
    table: str
    event_type: ChangeType
    row: dict[str, Any]
    ts: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Subscription:
    """A scoped handle on the change stream.

    Must be used as an async context manager; the queue is registered on
    entry and released on exit.

    Usage:
        async with broadcaster.subscribe({"sensor"}, last_seq=41) as sub:
            async for event in sub:
                ...
    """

    def __init__(
        self,
        broadcaster: "ChangeBroadcaster",
        tables: frozenset[str] | None,
        last_seq: int | None,
        queue_size: int,
    ):
        self._broadcaster = broadcaster
        self.tables = tables
        self.last_seq = last_seq if last_seq is not None else broadcaster.latest_seq
        self._queue_size = queue_size
        self._queue: asyncio.Queue[ChangeEvent | None] | None = None
        self._closed = False
        self.gap = False  # events older than the buffer were requested
        self.overflowed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def wants(self, event: ChangeEvent) -> bool:
        return self.tables is None or event.table in self.tables

    async def __aenter__(self) -> "Subscription":
        replay = self._broadcaster._attach(self)
        self._queue = asyncio.Queue(maxsize=self._queue_size + len(replay))
        for event in replay:
            self._queue.put_nowait(event)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._broadcaster._detach(self)
        self._closed = True

    def _deliver(self, event: ChangeEvent | None) -> bool:
        """Queue an event; False when this subscriber cannot keep up."""
        if self._queue is None:
            return True
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.overflowed = True
            self._closed = True
            return False
        return True

    def _close(self) -> None:
        self._closed = True
        if self._queue is not None:
            with suppress(asyncio.QueueFull):
                self._queue.put_nowait(None)

    def __aiter__(self) -> "Subscription":
        return self

    async def _next(self) -> ChangeEvent | None:
        if self._queue is None:
            raise RuntimeError("Subscription must be entered with 'async with' before iterating")
        while True:
            if self._closed and self._queue.empty():
                return None
            event = await self._queue.get()
            if event is None:
                return None
            if event.seq <= self.last_seq:
                continue
            self.last_seq = event.seq
            return event

    async def __anext__(self) -> ChangeEvent:
        event = await self._next()
        if event is None:
            raise StopAsyncIteration
        return event

    async def get(self, timeout: float | None = None) -> ChangeEvent | None:
        """Next event, or None on timeout or when the stream has ended."""
        try:
            return await asyncio.wait_for(self._next(), timeout)
        except asyncio.TimeoutError:
            return None


class ChangeBroadcaster:
    """Sequence, buffer and fan out change events."""

    def __init__(self, buffer_size: int = 1000, queue_size: int = 200):
        self._seq = 0
        self._buffer: deque[ChangeEvent] = deque(maxlen=buffer_size)
        self._subscriptions: set[Subscription] = set()
        self.queue_size = queue_size
        self._shutting_down = False

    @property
    def latest_seq(self) -> int:
        return self._seq

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, table: str, event_type: ChangeType | str, row: dict[str, Any]) -> ChangeEvent:
        """Assign the next sequence number and deliver to matching subscribers."""
        self._seq += 1
        event = ChangeEvent(seq=self._seq, table=table, event_type=ChangeType(event_type), row=row)
        self._buffer.append(event)

        dropped = [sub for sub in self._subscriptions if sub.wants(event) and not sub._deliver(event)]
        for sub in dropped:
            logger.warning("Dropping slow realtime subscriber at seq %d", sub.last_seq)
            self._subscriptions.discard(sub)
        return event

    def publish_many(self, changes: Iterable[tuple[str, ChangeType | str, dict[str, Any]]]) -> list[ChangeEvent]:
        return [self.publish(table, event_type, row) for table, event_type, row in changes]

    def subscribe(
        self,
        tables: Iterable[str] | None = None,
        last_seq: int | None = None,
        queue_size: int | None = None,
    ) -> Subscription:
        """Create a subscription handle (enter it with ``async with``).

        Args:
            tables: Table names to receive; None means all.
            last_seq: Last sequence already seen; newer buffered events
                are replayed on entry.
        """
        return Subscription(
            self,
            frozenset(tables) if tables else None,
            last_seq,
            queue_size or self.queue_size,
        )

    def _attach(self, sub: Subscription) -> list[ChangeEvent]:
        # Replay and registration happen without an await in between,
        # so nothing published meanwhile is missed or repeated.
        if self._buffer and sub.last_seq < self._buffer[0].seq - 1:
            sub.gap = True
        replay = [e for e in self._buffer if e.seq > sub.last_seq and sub.wants(e)]
        if self._shutting_down:
            sub._closed = True
        else:
            self._subscriptions.add(sub)
        return replay

    def _detach(self, sub: Subscription) -> None:
        self._subscriptions.discard(sub)

    def events_since(self, last_seq: int, tables: Iterable[str] | None = None) -> list[ChangeEvent]:
        wanted = frozenset(tables) if tables else None
        return [e for e in self._buffer if e.seq > last_seq and (wanted is None or e.table in wanted)]

    def signal_shutdown(self) -> None:
        """Wake and end every subscription (used from the app lifespan)."""
        self._shutting_down = True
        for sub in list(self._subscriptions):
            sub._close()
        self._subscriptions.clear()


class RowCache:
    """Client-side view of table rows kept current from change events.

    Applying the same event twice, or an older one, changes nothing.
    """

    def __init__(self, key: str = "id"):
        self.key = key
        self.last_seq = 0
        self._rows: dict[tuple[str, Any], dict[str, Any]] = {}

    def apply(self, event: ChangeEvent) -> bool:
        """Apply an event. Returns False when it was already applied."""
        if event.seq <= self.last_seq:
            return False
        self.last_seq = event.seq
        row_key = (event.table, event.row.get(self.key))
        if event.event_type == ChangeType.DELETE:
            self._rows.pop(row_key, None)
        else:
            self._rows[row_key] = dict(event.row)
        return True

    def rows(self, table: str) -> list[dict[str, Any]]:
        return [row for (row_table, _), row in self._rows.items() if row_table == table]

    def get(self, table: str, row_id: Any) -> dict[str, Any] | None:
        return self._rows.get((table, row_id))


_broadcaster: ChangeBroadcaster | None = None


def get_broadcaster() -> ChangeBroadcaster:
    """Process-wide broadcaster, created on first use."""
    global _broadcaster
    if _broadcaster is None:
        from twinsync.settings import get_settings

        settings = get_settings()
        _broadcaster = ChangeBroadcaster(
            buffer_size=settings.realtime_buffer_size,
            queue_size=settings.realtime_queue_size,
        )
    return _broadcaster


def reset_broadcaster() -> None:
    global _broadcaster
    _broadcaster = None
