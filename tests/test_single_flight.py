"""
Tests for the per-account run lease.
"""
import asyncio

import pytest

from tradedesk.single_flight import RunInProgressError, SingleFlight


async def test_second_holder_is_rejected_immediately():
    lease = SingleFlight()
    entered = asyncio.Event()
    release = asyncio.Event()

    async def long_run():
        async with lease.hold("PK1", holder="run:cron"):
            entered.set()
            await release.wait()

    task = asyncio.create_task(long_run())
    await entered.wait()

    with pytest.raises(RunInProgressError) as exc_info:
        async with lease.hold("PK1", holder="run:manual"):
            pass

    assert exc_info.value.holder == "run:cron"
    assert lease.holder("PK1")["holder"] == "run:cron"

    release.set()
    await task
    assert lease.is_held("PK1") is False


async def test_keys_are_independent():
    lease = SingleFlight()

    async with lease.hold("PK1"):
        async with lease.hold("PK2"):
            assert lease.is_held("PK1") and lease.is_held("PK2")


async def test_released_after_exception():
    lease = SingleFlight()

    with pytest.raises(ValueError):
        async with lease.hold("PK1"):
            raise ValueError("boom")

    assert lease.is_held("PK1") is False
    async with lease.hold("PK1"):
        assert lease.holder("PK1") is not None


async def test_lock_is_created_once_per_key():
    lease = SingleFlight()

    async with lease.hold("PK1"):
        first = lease._locks["PK1"]
    async with lease.hold("PK1"):
        assert lease._locks["PK1"] is first
    assert list(lease._locks) == ["PK1"]
