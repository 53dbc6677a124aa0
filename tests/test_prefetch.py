from __future__ import annotations

import asyncio

from conftest import FakeRemoteBackend, settle
from readaloud.cache import RenderCache
from readaloud.errors import ProviderNetworkError
from readaloud.prefetch import PrefetchScheduler


def test_window_stops_at_document_end():
    scheduler = PrefetchScheduler(cache=None, lookahead=2)
    assert scheduler.window(0, 5) == [1, 2]
    assert scheduler.window(3, 5) == [4]
    assert scheduler.window(4, 5) == []


def test_zero_lookahead_disables_prefetch():
    scheduler = PrefetchScheduler(cache=None, lookahead=0)
    assert scheduler.window(0, 5) == []


def test_maintain_renders_ahead_once(tmp_path):
    async def scenario():
        backend = FakeRemoteBackend()
        cache = RenderCache(tmp_path)
        cache.bind("book", ["a", "b", "c", "d"], backend)
        scheduler = PrefetchScheduler(cache, lookahead=2)

        assert scheduler.maintain("book", 0, 4) == [1, 2]
        assert scheduler.maintain("book", 0, 4) == []
        await settle()
        assert backend.calls == ["b", "c"]
        assert scheduler.pending == 0

        assert scheduler.maintain("book", 1, 4) == [3]

    asyncio.run(scenario())


def test_prefetch_failures_are_swallowed(tmp_path):
    async def scenario():
        backend = FakeRemoteBackend()
        backend.failures["b"] = ProviderNetworkError("down")
        cache = RenderCache(tmp_path)
        cache.bind("book", ["a", "b"], backend)
        scheduler = PrefetchScheduler(cache, lookahead=1)

        scheduler.maintain("book", 0, 2)
        await settle()
        assert not cache.has_entry(1)
        assert scheduler.pending == 0

    asyncio.run(scenario())


def test_cancel_all_keeps_shared_render_alive(tmp_path):
    async def scenario():
        backend = FakeRemoteBackend()
        gate = asyncio.Event()
        backend.gates["b"] = gate
        cache = RenderCache(tmp_path)
        cache.bind("book", ["a", "b"], backend)
        scheduler = PrefetchScheduler(cache, lookahead=1)

        scheduler.maintain("book", 0, 2)
        await settle()
        scheduler.cancel_all()
        gate.set()
        await settle()
        assert cache.peek(1) is not None

    asyncio.run(scenario())
