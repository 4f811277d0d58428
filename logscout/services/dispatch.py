"""Non-blocking hand-off of updates to the presentation loop.

Background tasks never call the presentation layer directly; they submit
an update here and the presentation loop pumps the queue. ``submit`` never
waits and never loses an update while the dispatcher is open. Once it is
closed (shutdown has begun) updates are dropped and False is returned.

The queue is unbounded. Producers that can outpace the loop, like a tail
stream, coalesce their output so they keep at most one update pending.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Update = tuple[Callable[..., Any], tuple[Any, ...]]


class UpdateDispatcher:
    """Queue of callables executed by the presentation loop."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Update | None] = asyncio.Queue()
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of updates waiting to run."""
        return self._queue.qsize()

    def submit(self, fn: Callable[..., Any], *args: Any) -> bool:
        """Queue fn(*args) for the presentation loop without blocking.

        Returns:
            True if queued, False if dropped because the dispatcher is closed.
        """
        if self._closed:
            self.dropped += 1
            logger.debug("Update %s dropped: dispatcher closed", getattr(fn, "__name__", fn))
            return False
        self._queue.put_nowait((fn, args))
        return True

    def close(self) -> None:
        """Stop accepting updates and wake run() so it can return."""
        if self._closed:
            return
        self._closed = True
        logger.debug("Dispatcher closed (%d pending)", self._queue.qsize())
        self._queue.put_nowait(None)

    def _apply(self, update: Update) -> None:
        fn, args = update
        try:
            fn(*args)
        except Exception:
            logger.exception("Update %s failed", getattr(fn, "__name__", fn))

    def drain(self) -> int:
        """Run every update queued so far. Returns how many ran."""
        count = 0
        while True:
            try:
                update = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return count
            if update is None:
                continue
            self._apply(update)
            count += 1

    async def run(self) -> None:
        """Pump updates until close() is called."""
        while not self._closed or not self._queue.empty():
            update = await self._queue.get()
            if update is None:
                if self._closed:
                    # Updates queued before close still run.
                    self.drain()
                    return
                continue
            self._apply(update)
