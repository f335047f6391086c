"""
Tests for the server-side controller: shared run lease, reset and snapshot.
"""
import asyncio

import pytest

from fakes import FakeBroker, FakeNotifier, FakeSignalSource, make_order, make_position, pick
from server.trading_controller import TradingController
from tradedesk.main import TradingBot
from tradedesk.models import RunStatus
from tradedesk.single_flight import RunInProgressError


class GatedSource(FakeSignalSource):
    """Blocks inside scan() until released so a second trigger can overlap."""

    def __init__(self, picks):
        super().__init__(picks)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def scan(self, force_refresh=False):
        self.entered.set()
        await self.release.wait()
        return await super().scan(force_refresh)


def make_controller(base_config, broker, source=None):
    bot = TradingBot(
        base_config,
        client=broker,
        signal_source=source or FakeSignalSource([pick("AAPL", 80)]),
        notifier=FakeNotifier(),
    )
    return TradingController(bot)


async def test_overlapping_runs_do_not_double_submit(base_config):
    broker = FakeBroker(prices={"AAPL": 100.0})
    source = GatedSource([pick("AAPL", 80)])
    controller = make_controller(base_config, broker, source)

    first = asyncio.create_task(controller.run_cycle(trigger="cron"))
    await source.entered.wait()
    second = await controller.run_cycle(trigger="manual")
    source.release.set()
    first = await first

    assert second.status == RunStatus.BUSY
    assert first.status == RunStatus.COMPLETED
    assert len(broker.submitted) == 1


async def test_reset_rejected_while_run_in_progress(base_config):
    broker = FakeBroker(prices={"AAPL": 100.0})
    source = GatedSource([pick("AAPL", 80)])
    controller = make_controller(base_config, broker, source)

    run = asyncio.create_task(controller.run_cycle())
    await source.entered.wait()
    with pytest.raises(RunInProgressError):
        await controller.reset_portfolio()
    source.release.set()
    await run


async def test_status_tracks_last_run_and_reset(base_config):
    broker = FakeBroker(prices={"AAPL": 100.0}, orders=[make_order("o1")])
    controller = make_controller(base_config, broker)

    await controller.run_cycle(trigger="manual")
    await controller.reset_portfolio()
    status = controller.status()

    assert status["last_run"]["status"] == "completed"
    assert status["last_run"]["summary"]["submitted"] == 1
    assert status["last_reset"]["ordersCancelled"] == 1
    assert status["running"] is None


async def test_snapshot(base_config):
    orders = [make_order(f"o{i}") for i in range(15)]
    broker = FakeBroker(positions=[make_position("AAPL")], orders=orders)
    controller = make_controller(base_config, broker)

    snapshot = await controller.snapshot()

    assert snapshot["account"]["buyingPower"] == 100000
    assert snapshot["positions"][0]["symbol"] == "AAPL"
    assert len(snapshot["recentOrders"]) == 10
    assert snapshot["marketOpen"] is True
    assert ("get_orders", "all", 20) in broker.calls


def test_scheduler_handlers_registered(base_config):
    controller = TradingController.from_config(
        base_config,
        client=FakeBroker(),
        signal_source=FakeSignalSource([]),
        notifier=FakeNotifier(),
    )

    assert set(controller.scheduler.task_handlers) == {"auto_trade", "reset_portfolio"}
