"""
Tests for the TTL cache and its single-flight refresh.
"""
import asyncio

import pytest

from tradedesk.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


async def test_concurrent_cold_reads_share_one_load():
    cache = TTLCache(ttl_seconds=60)
    loads = []

    async def loader():
        loads.append(1)
        await asyncio.sleep(0.01)
        return ["AAPL"]

    results = await asyncio.gather(*(cache.get_or_load("scan", loader) for _ in range(10)))

    assert len(loads) == 1
    assert all(r == ["AAPL"] for r in results)


async def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=300, clock=clock)
    values = iter(["first", "second"])

    async def loader():
        return next(values)

    assert await cache.get_or_load("k", loader) == "first"
    clock.now = 299
    assert await cache.get_or_load("k", loader) == "first"
    clock.now = 300
    assert await cache.get_or_load("k", loader) == "second"


async def test_force_bypasses_fresh_entry():
    cache = TTLCache(ttl_seconds=300)
    cache.set("k", "stale")

    async def loader():
        return "fresh"

    assert await cache.get_or_load("k", loader, force=True) == "fresh"
    assert cache.get("k") == "fresh"


async def test_failures_are_not_cached():
    cache = TTLCache(ttl_seconds=300)
    calls = []

    async def broken():
        calls.append(1)
        raise RuntimeError("scanner down")

    with pytest.raises(RuntimeError):
        await cache.get_or_load("k", broken)

    async def working():
        return "ok"

    assert await cache.get_or_load("k", working) == "ok"
    assert len(calls) == 1


def test_invalidate():
    cache = TTLCache(ttl_seconds=300)
    cache.set("a", 1)
    cache.set("b", 2)

    cache.invalidate("a")
    assert cache.get("a") is None
    assert cache.get("b") == 2

    cache.invalidate()
    assert cache.get("b") is None
