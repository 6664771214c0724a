"""Request coalescing cache.

This module handles:
- One outstanding request per key
- Forced refresh that replaces a stored request
- Entries that are dropped as soon as they resolve
- Eviction of failed requests so the next caller retries
"""

from __future__ import annotations

import asyncio
from functools import partial
import logging
from typing import Any, Awaitable, Callable

_LOGGER = logging.getLogger(__name__)

RequestFactory = Callable[[], Awaitable[Any]]


class RequestCache:
    """Keyed store of in-flight and completed remote calls.

    Example:
        cache = RequestCache()
        config = await cache.fetch("systemConfig", load_system_config)
        # A second concurrent caller gets the same result without a new call
        config = await cache.fetch("systemConfig", load_system_config)
    """

    def __init__(self) -> None:
        """Initialize an empty cache."""
        self._entries: dict[str, asyncio.Future[Any]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> asyncio.Future[Any] | None:
        """Return the stored handle for a key, if any."""
        return self._entries.get(key)

    def get_or_create(
        self,
        key: str,
        factory: RequestFactory,
        *,
        update: bool = False,
        keep: bool = True,
    ) -> asyncio.Future[Any]:
        """Return the live handle for a key, creating it if needed.

        Args:
            key: Cache key
            factory: Coroutine function that performs the remote call
            update: Replace any stored handle with a fresh request
            keep: Keep the result after resolution (False drops it)

        Returns:
            The shared handle callers await
        """
        if not update:
            handle = self._entries.get(key)
            if handle is not None:
                return handle

        handle = asyncio.ensure_future(factory())
        self._entries[key] = handle
        handle.add_done_callback(partial(self._on_done, key, keep))
        return handle

    async def fetch(
        self,
        key: str,
        factory: RequestFactory,
        *,
        update: bool = False,
        keep: bool = True,
    ) -> Any:
        """Await the shared handle for a key.

        The handle is shielded so a cancelled caller never cancels the
        request other callers are waiting on.
        """
        handle = self.get_or_create(key, factory, update=update, keep=keep)
        return await asyncio.shield(handle)

    def set(self, key: str, value: Any) -> None:
        """Store an already known value under a key."""
        handle: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        handle.set_result(value)
        self._entries[key] = handle

    def invalidate(self, key: str) -> None:
        """Drop the handle stored for a key."""
        self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        """Drop every handle whose key starts with prefix."""
        for key in [key for key in self._entries if key.startswith(prefix)]:
            del self._entries[key]

    def clear(self) -> None:
        """Drop all handles."""
        self._entries.clear()

    def _on_done(self, key: str, keep: bool, handle: asyncio.Future[Any]) -> None:
        """Evict a resolved handle that must not be reused."""
        if self._entries.get(key) is not handle:
            return
        if handle.cancelled():
            del self._entries[key]
        elif handle.exception() is not None:
            _LOGGER.debug("Evicting failed request %s: %s", key, handle.exception())
            del self._entries[key]
        elif not keep:
            del self._entries[key]
