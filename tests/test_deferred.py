"""Tests for the deferred dispatch queue."""

import asyncio

from pyiobroker.deferred import DeferredQueue


class TestDeferredQueue:
    """Tests for DeferredQueue."""

    async def test_push_runs_on_next_iteration(self):
        queue = DeferredQueue()
        calls = []

        queue.push(calls.append, 1)
        assert calls == []

        await queue.flush()
        assert calls == [1]

    async def test_fifo_order(self):
        queue = DeferredQueue()
        calls = []

        for value in range(5):
            queue.push(calls.append, value)
        await queue.flush()

        assert calls == [0, 1, 2, 3, 4]

    async def test_failing_item_does_not_stop_others(self, caplog):
        queue = DeferredQueue()
        calls = []

        def fail():
            raise ValueError("boom")

        queue.push(fail)
        queue.push(calls.append, "after")
        await queue.flush()

        assert calls == ["after"]
        assert "Deferred task error" in caplog.text

    async def test_items_pushed_during_drain_run_later(self):
        queue = DeferredQueue()
        calls = []

        def first():
            calls.append("first")
            queue.push(calls.append, "nested")

        queue.push(first)
        queue.push(calls.append, "second")
        await queue.flush()

        assert calls == ["first", "second", "nested"]

    async def test_clear_drops_items(self):
        queue = DeferredQueue()
        calls = []

        queue.push(calls.append, 1)
        queue.clear()
        await asyncio.sleep(0)
        await queue.flush()

        assert calls == []
        assert not queue.pending
