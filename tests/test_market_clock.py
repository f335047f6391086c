"""
Tests for the market open/closed gate.
"""
import pytest

from fakes import FakeBroker
from tradedesk.market_clock import MarketClock


@pytest.mark.parametrize("market_open,expected", [(True, True), (False, False), (None, False)])
async def test_is_open(market_open, expected):
    assert await MarketClock(FakeBroker(market_open=market_open)).is_open() is expected


async def test_status_reports_unavailable_clock():
    status = await MarketClock(FakeBroker(market_open=None)).status()

    assert status == {"is_open": False, "available": False}


async def test_status_passes_clock_through():
    status = await MarketClock(FakeBroker(market_open=True)).status()

    assert status["is_open"] is True
    assert status["available"] is True
