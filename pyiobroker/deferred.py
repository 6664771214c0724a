"""Deferred task queue for push-notification dispatch.

Notifications arrive inside transport callbacks. Running subscriber
callbacks there would let a handler subscribe or unsubscribe while the
registry is being iterated, so each notification is queued and the queue
is drained on the next event loop iteration.
"""

from __future__ import annotations

import asyncio
from collections import deque
import logging
from typing import Any, Callable

_LOGGER = logging.getLogger(__name__)


class DeferredQueue:
    """FIFO of callables drained one loop iteration after the first push.

    Items pushed while a drain is running go to the next drain.
    """

    def __init__(self) -> None:
        """Initialize an empty queue."""
        self._queue: deque[tuple[Callable[..., Any], tuple[Any, ...]]] = deque()
        self._scheduled = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def pending(self) -> bool:
        """Return True if items are waiting for a drain."""
        return bool(self._queue) or self._scheduled

    def push(self, func: Callable[..., Any], *args: Any) -> None:
        """Queue func(*args) for the next drain."""
        self._queue.append((func, args))
        if not self._scheduled:
            self._scheduled = True
            asyncio.get_running_loop().call_soon(self._drain)

    def clear(self) -> None:
        """Drop all queued items."""
        self._queue.clear()

    async def flush(self) -> None:
        """Wait until every queued item has run."""
        while self.pending:
            await asyncio.sleep(0)

    def _drain(self) -> None:
        self._scheduled = False
        batch, self._queue = self._queue, deque()
        for func, args in batch:
            try:
                func(*args)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Deferred task error")
        if self._queue and not self._scheduled:
            self._scheduled = True
            asyncio.get_running_loop().call_soon(self._drain)
