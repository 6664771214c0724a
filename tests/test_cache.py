"""Tests for the request coalescing cache."""

import asyncio

import pytest

from pyiobroker.cache import RequestCache


class CountingFactory:
    """Factory that counts calls and waits for a release."""

    def __init__(self, result="value"):
        self.calls = 0
        self.result = result
        self.release = asyncio.Event()

    async def __call__(self):
        self.calls += 1
        await self.release.wait()
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class TestRequestCache:
    """Tests for RequestCache."""

    async def test_concurrent_callers_share_one_request(self):
        cache = RequestCache()
        factory = CountingFactory()

        first = asyncio.create_task(cache.fetch("key", factory))
        second = asyncio.create_task(cache.fetch("key", factory))
        await asyncio.sleep(0)
        factory.release.set()

        assert await first == "value"
        assert await second == "value"
        assert factory.calls == 1

    async def test_result_is_reused(self):
        cache = RequestCache()
        factory = CountingFactory()
        factory.release.set()

        await cache.fetch("key", factory)
        await cache.fetch("key", factory)

        assert factory.calls == 1
        assert "key" in cache

    async def test_update_forces_new_request(self):
        cache = RequestCache()
        factory = CountingFactory()
        factory.release.set()

        await cache.fetch("key", factory)
        await cache.fetch("key", factory, update=True)

        assert factory.calls == 2

    async def test_keep_false_drops_after_resolution(self):
        cache = RequestCache()
        factory = CountingFactory()
        factory.release.set()

        assert await cache.fetch("key", factory, keep=False) == "value"
        await asyncio.sleep(0)

        assert "key" not in cache

    async def test_failure_is_evicted(self):
        cache = RequestCache()
        factory = CountingFactory(result=RuntimeError("boom"))
        factory.release.set()

        with pytest.raises(RuntimeError):
            await cache.fetch("key", factory)
        await asyncio.sleep(0)

        assert "key" not in cache

        factory.result = "recovered"
        assert await cache.fetch("key", factory) == "recovered"
        assert factory.calls == 2

    async def test_cancelled_caller_does_not_cancel_request(self):
        cache = RequestCache()
        factory = CountingFactory()

        first = asyncio.create_task(cache.fetch("key", factory))
        second = asyncio.create_task(cache.fetch("key", factory))
        await asyncio.sleep(0)
        first.cancel()
        factory.release.set()

        assert await second == "value"
        await asyncio.gather(first, return_exceptions=True)
        assert first.cancelled()

    async def test_set_stores_known_value(self):
        cache = RequestCache()
        cache.set("key", {"a": 1})
        factory = CountingFactory()

        assert await cache.fetch("key", factory) == {"a": 1}
        assert factory.calls == 0

    async def test_invalidate_prefix(self):
        cache = RequestCache()
        cache.set("installed_a", 1)
        cache.set("installed_b", 2)
        cache.set("repo", 3)

        cache.invalidate_prefix("installed_")

        assert len(cache) == 1
        assert "repo" in cache

    async def test_stale_completion_does_not_evict_replacement(self):
        cache = RequestCache()
        old = CountingFactory(result=RuntimeError("old"))
        new = CountingFactory(result="new")
        new.release.set()

        stale = cache.get_or_create("key", old)
        assert await cache.fetch("key", new, update=True) == "new"

        old.release.set()
        with pytest.raises(RuntimeError):
            await stale

        assert "key" in cache
        assert await cache.fetch("key", new) == "new"
