"""
Tests for the scan-and-trade execution cycle.
"""
import httpx
import pytest

from fakes import FakeBroker, FakeNotifier, FakeSignalSource, make_account, make_position, pick
from tradedesk.alpaca_client import AlpacaClient
from tradedesk.execution_engine import (
    REASON_INSUFFICIENT_BUYING_POWER,
    REASON_NO_PRICE,
    REASON_PRICE_TOO_HIGH,
    REASON_SUBMISSION_FAILED,
    ExecutionCoordinator,
    calculate_quantity,
)
from tradedesk.market_clock import MarketClock
from tradedesk.models import RunStatus, TradeStatus
from tradedesk.risk_manager import RiskGate


def make_coordinator(broker, picks=None, trading=None, notifier=None, source=None, risk=None):
    trading_config = {
        "trade_amount": 1000,
        "stop_loss_pct": 0.10,
        "take_profit_pct": 0.25,
        "max_positions": 5,
    }
    trading_config.update(trading or {})
    source = source or FakeSignalSource(picks or [])
    gate = RiskGate(
        risk if risk is not None else {"min_score": 0, "excluded_symbols": ["SPY"]},
        max_positions=trading_config["max_positions"],
    )
    return ExecutionCoordinator(
        broker, MarketClock(broker), source, gate, trading_config, notifier=notifier
    )


@pytest.mark.parametrize("amount,price,expected", [
    (1000, 100.0, 10),
    (1000, 333.0, 3),
    (1000, 1000.0, 1),
    (1000, 1000.01, 0),
    (1000, 0, 0),
])
def test_calculate_quantity(amount, price, expected):
    assert calculate_quantity(amount, price) == expected


class TestRunGates:

    async def test_disabled(self, broker):
        coordinator = make_coordinator(broker, [pick("AAPL", 80)], trading={"auto_trade_enabled": "false"})

        summary = await coordinator.run()

        assert summary.status == RunStatus.DISABLED
        assert broker.calls == []

    async def test_market_closed_places_nothing(self):
        broker = FakeBroker(prices={"AAPL": 100.0}, market_open=False)

        summary = await make_coordinator(broker, [pick("AAPL", 80)]).run()

        assert summary.status == RunStatus.MARKET_CLOSED
        assert summary.success is False
        assert broker.submitted == []
        assert ("get_account",) not in broker.calls

    async def test_unknown_market_status_is_closed(self):
        broker = FakeBroker(prices={"AAPL": 100.0}, market_open=None)

        summary = await make_coordinator(broker, [pick("AAPL", 80)]).run()

        assert summary.status == RunStatus.MARKET_CLOSED
        assert broker.submitted == []

    async def test_account_unavailable(self, broker):
        broker.account_available = False
        source = FakeSignalSource([pick("AAPL", 80)])

        summary = await make_coordinator(broker, source=source).run()

        assert summary.status == RunStatus.ACCOUNT_UNAVAILABLE
        assert source.calls == []

    async def test_max_positions_reached(self):
        broker = FakeBroker(positions=[make_position(s) for s in ["A", "B"]])
        source = FakeSignalSource([pick("AAPL", 80)])

        summary = await make_coordinator(broker, source=source, trading={"max_positions": 2}).run()

        assert summary.status == RunStatus.MAX_POSITIONS
        assert summary.success is True
        assert source.calls == []

    async def test_max_positions_counts_fractional_holdings(self):
        rows = [
            {"symbol": s, "qty": q, "avg_entry_price": "100", "current_price": "100",
             "market_value": "100", "unrealized_pl": "0", "unrealized_plpc": "0"}
            for s, q in [("AAPL", "3"), ("MSFT", "0.5")]
        ]
        routes = {
            "/v2/clock": {"is_open": True},
            "/v2/account": {"equity": "5000", "buying_power": "5000", "cash": "5000",
                            "portfolio_value": "5000", "account_number": "PA1"},
            "/v2/positions": rows,
        }
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=routes[request.url.path]))
        client = AlpacaClient("PKTEST", "SECRET", transport=transport, retry_delay_seconds=0)
        source = FakeSignalSource([pick("MSFT", 90), pick("NVDA", 80)])

        summary = await make_coordinator(client, source=source, trading={"max_positions": 2}).run()
        await client.aclose()

        assert summary.status == RunStatus.MAX_POSITIONS
        assert summary.current_positions == 2
        assert source.calls == []

    async def test_unreadable_positions_abort_the_cycle(self):
        broker = FakeBroker(prices={"AAPL": 100.0})
        broker.positions_available = False
        source = FakeSignalSource([pick("AAPL", 80)])

        summary = await make_coordinator(broker, source=source).run()

        assert summary.status == RunStatus.ACCOUNT_UNAVAILABLE
        assert summary.success is False
        assert source.calls == []
        assert broker.submitted == []

    async def test_scan_failed(self, broker):
        source = FakeSignalSource(error="scanner returned 503")

        summary = await make_coordinator(broker, source=source).run()

        assert summary.status == RunStatus.SCAN_FAILED
        assert "503" in summary.message

    async def test_no_candidates(self, broker):
        summary = await make_coordinator(broker, [pick("SPY", 99)]).run()

        assert summary.status == RunStatus.NO_CANDIDATES
        assert summary.success is True
        assert summary.trades == []

    async def test_force_refresh_is_passed_to_source(self, broker):
        source = FakeSignalSource([])

        await make_coordinator(broker, source=source).run(force_refresh=True)

        assert source.calls == [True]


class TestExecution:

    async def test_submits_bracket_orders_in_rank_order(self):
        broker = FakeBroker(prices={"AAPL": 100.0, "TSLA": 250.0, "SPY": 400.0})

        summary = await make_coordinator(
            broker, [pick("TSLA", 60), pick("AAPL", 80), pick("SPY", 90)]
        ).run(trigger="cron")

        assert summary.status == RunStatus.COMPLETED
        assert summary.trigger == "cron"
        assert [t.symbol for t in summary.trades] == ["AAPL", "TSLA"]
        assert [(s["symbol"], s["qty"]) for s in broker.submitted] == [("AAPL", 10), ("TSLA", 4)]

        aapl = summary.trades[0]
        assert aapl.status == TradeStatus.SUBMITTED
        assert aapl.order_id == "order-1"
        assert aapl.stop_price == 90.0
        assert aapl.limit_price == 125.0
        assert aapl.estimated_cost == 1000.0
        assert summary.counts() == {"attempted": 2, "submitted": 2, "skipped": 0, "failed": 0}

    async def test_decisions_are_affordable_and_bracketed(self):
        broker = FakeBroker(prices={"AAPL": 187.33, "MSFT": 412.9, "NVDA": 99.99})

        summary = await make_coordinator(
            broker, [pick("AAPL", 80), pick("MSFT", 70), pick("NVDA", 60)]
        ).run()

        assert len({d.symbol for d in summary.decisions}) == len(summary.decisions) == 3
        for decision in summary.decisions:
            assert decision.qty >= 1
            assert decision.estimated_cost <= 1000
            assert decision.stop_price < decision.estimated_cost / decision.qty < decision.limit_price

    async def test_insufficient_buying_power_skips_all(self):
        broker = FakeBroker(account=make_account(200), prices={"AAPL": 10.0, "MSFT": 20.0})

        summary = await make_coordinator(
            broker, [pick("AAPL", 80), pick("MSFT", 70)], trading={"trade_amount": 250}
        ).run()

        assert summary.status == RunStatus.COMPLETED
        assert [t.status for t in summary.trades] == [TradeStatus.SKIPPED, TradeStatus.SKIPPED]
        assert all(t.reason == REASON_INSUFFICIENT_BUYING_POWER for t in summary.trades)
        assert broker.submitted == []

    async def test_missing_price_skips_only_that_candidate(self):
        broker = FakeBroker(prices={"AAPL": None, "MSFT": 100.0})

        summary = await make_coordinator(broker, [pick("AAPL", 80), pick("MSFT", 70)]).run()

        aapl, msft = summary.trades
        assert aapl.status == TradeStatus.SKIPPED
        assert aapl.reason == REASON_NO_PRICE
        assert msft.status == TradeStatus.SUBMITTED

    async def test_price_too_high(self):
        broker = FakeBroker(prices={"BRK.A": 600000.0})

        summary = await make_coordinator(broker, [pick("BRK.A", 80)]).run()

        assert summary.trades[0].status == TradeStatus.SKIPPED
        assert summary.trades[0].reason == REASON_PRICE_TOO_HIGH
        assert broker.submitted == []

    async def test_submission_failure_does_not_stop_run(self):
        broker = FakeBroker(prices={"AAPL": 100.0, "MSFT": 100.0})
        broker.failing_submissions.add("AAPL")

        summary = await make_coordinator(broker, [pick("AAPL", 80), pick("MSFT", 70)]).run()

        assert summary.trades[0].status == TradeStatus.FAILED
        assert summary.trades[0].reason == REASON_SUBMISSION_FAILED
        assert summary.trades[1].status == TradeStatus.SUBMITTED

    async def test_unexpected_error_is_isolated(self):
        broker = FakeBroker(prices={"AAPL": 100.0, "MSFT": 100.0})
        broker.raising.add("AAPL")

        summary = await make_coordinator(broker, [pick("AAPL", 80), pick("MSFT", 70)]).run()

        assert summary.trades[0].status == TradeStatus.FAILED
        assert summary.trades[1].status == TradeStatus.SUBMITTED

    async def test_candidates_processed_sequentially(self):
        broker = FakeBroker(prices={"AAPL": 100.0, "MSFT": 100.0})

        await make_coordinator(broker, [pick("AAPL", 80), pick("MSFT", 70)]).run()

        per_candidate = [c for c in broker.calls if c[0] in ("get_latest_price", "submit_bracket_order")]
        assert per_candidate == [
            ("get_latest_price", "AAPL"),
            ("submit_bracket_order", "AAPL", 10),
            ("get_latest_price", "MSFT"),
            ("submit_bracket_order", "MSFT", 10),
        ]


class TestBuyingPowerTracking:

    async def test_running_counter_stops_when_depleted(self):
        broker = FakeBroker(account=make_account(1500), prices={"AAPL": 100.0, "MSFT": 100.0})

        summary = await make_coordinator(broker, [pick("AAPL", 80), pick("MSFT", 70)]).run()

        assert [t.status for t in summary.trades] == [TradeStatus.SUBMITTED, TradeStatus.SKIPPED]
        assert summary.trades[1].reason == REASON_INSUFFICIENT_BUYING_POWER

    async def test_snapshot_mode_checks_start_of_run_value(self):
        broker = FakeBroker(account=make_account(1500), prices={"AAPL": 100.0, "MSFT": 100.0})

        summary = await make_coordinator(
            broker, [pick("AAPL", 80), pick("MSFT", 70)], trading={"track_buying_power": False}
        ).run()

        assert [t.status for t in summary.trades] == [TradeStatus.SUBMITTED, TradeStatus.SUBMITTED]


class TestNotification:

    async def test_notifies_submitted_trades(self):
        broker = FakeBroker(prices={"AAPL": 100.0})
        notifier = FakeNotifier()

        summary = await make_coordinator(broker, [pick("AAPL", 80)], notifier=notifier).run()

        assert summary.notification_sent is True
        assert notifier.sent[0]["subject"] == "Auto-Trade: Executed 1 Trades"
        assert notifier.sent[0]["stocks"] == [{"symbol": "AAPL", "signal": "BUY", "strength": 80}]

    async def test_no_notification_without_submissions(self):
        broker = FakeBroker(prices={"AAPL": None})
        notifier = FakeNotifier()

        summary = await make_coordinator(broker, [pick("AAPL", 80)], notifier=notifier).run()

        assert notifier.sent == []
        assert summary.notification_sent is None

    async def test_notifier_failure_does_not_fail_run(self):
        broker = FakeBroker(prices={"AAPL": 100.0})
        notifier = FakeNotifier(error=RuntimeError("smtp down"))

        summary = await make_coordinator(broker, [pick("AAPL", 80)], notifier=notifier).run()

        assert summary.status == RunStatus.COMPLETED
        assert summary.notification_sent is False
        assert summary.trades[0].status == TradeStatus.SUBMITTED


async def test_summary_serialises_for_http(broker):
    broker.prices["AAPL"] = 100.0

    data = (await make_coordinator(broker, [pick("AAPL", 80)]).run()).to_dict()

    assert data["success"] is True
    assert data["status"] == "completed"
    assert data["summary"]["submitted"] == 1
    assert data["trades"][0]["orderId"] == "order-1"
    assert data["decisions"][0]["estimatedCost"] == 1000.0
