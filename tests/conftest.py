from typing import Any, Dict

import pytest

from fakes import FakeBroker
from tradedesk.market_clock import MarketClock


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def clock(broker) -> MarketClock:
    return MarketClock(broker)


@pytest.fixture
def trading_config() -> Dict[str, Any]:
    return {
        "auto_trade_enabled": True,
        "trade_amount": 1000,
        "stop_loss_pct": 0.10,
        "take_profit_pct": 0.25,
        "max_positions": 5,
        "track_buying_power": True,
    }


@pytest.fixture
def base_config(trading_config) -> Dict[str, Any]:
    return {
        "alpaca": {"key_id": "PKTEST", "secret_key": "secret", "base_url": "https://paper-api.alpaca.markets"},
        "trading": trading_config,
        "risk": {"min_score": 50, "excluded_symbols": ["SPY", "QQQ"]},
        "liquidation": {"max_concurrency": 4},
        "server": {},
        "scheduler": {"enabled": False},
        "alerts": {},
    }
