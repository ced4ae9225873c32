"""Live dashboard feed.

Polls openHAB on a fixed interval and keeps the latest item list in
memory. Nothing is persisted. Stopping the feed cancels the loop and
bumps a generation counter, so a fetch that resolves afterwards is
dropped instead of overwriting the view.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from twinsync.openhab.models import ExternalItem

logger = logging.getLogger(__name__)

FetchItems = Callable[[], Awaitable[list[ExternalItem]]]


class LiveFeed:
    """Cancellable polling loop over an item fetch coroutine.

    Usage:
        async with LiveFeed(client.list_items, interval=5) as feed:
            ...
            print(feed.items, feed.last_updated)
    """

    def __init__(
        self,
        fetch: FetchItems,
        interval: float = 5.0,
        on_update: Callable[["LiveFeed"], Any] | None = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._fetch = fetch
        self.interval = interval
        self._on_update = on_update
        self.items: list[ExternalItem] = []
        self.last_updated: datetime | None = None
        self.last_error: Exception | None = None
        self._generation = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def __aenter__(self) -> "LiveFeed":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def start(self) -> None:
        """Start polling. A no-op when already running."""
        if self.running:
            return
        self._generation += 1
        self._task = asyncio.create_task(self._loop(self._generation), name="twinsync-live-feed")

    async def stop(self) -> None:
        """Stop polling; results of any outstanding fetch are discarded."""
        self._generation += 1
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def refresh(self) -> list[ExternalItem]:
        """Fetch once now, outside the timer."""
        await self._fetch_once(self._generation)
        return self.items

    async def _loop(self, generation: int) -> None:
        while generation == self._generation:
            await self._fetch_once(generation)
            await asyncio.sleep(self.interval)

    async def _fetch_once(self, generation: int) -> None:
        try:
            items = await self._fetch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if generation == self._generation:
                self.last_error = e
                logger.warning("Live feed fetch failed: %s", e)
            return

        if generation != self._generation:
            logger.debug("Discarding live feed result from a stopped generation")
            return

        self.items = items
        self.last_updated = datetime.now(UTC)
        self.last_error = None
        if self._on_update is None:
            return
        try:
            result = self._on_update(self)
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Live feed update callback failed")


__all__ = ["LiveFeed"]
