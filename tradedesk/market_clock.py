"""
Market open/closed gate backed by the broker's clock endpoint.
"""
from typing import Any, Dict

from loguru import logger


class MarketClock:
    """
    Answers whether regular trading hours are active.

    The remote clock is the only source of truth. When it cannot be reached
    the market is reported closed so no entries are placed on unknown status.
    """

    def __init__(self, client):
        self.client = client

    async def is_open(self) -> bool:
        clock = await self.client.get_clock()
        if clock is None:
            logger.warning("Market clock unavailable - treating market as closed")
            return False
        return clock.get("is_open") is True

    async def status(self) -> Dict[str, Any]:
        clock = await self.client.get_clock()
        if clock is None:
            return {"is_open": False, "available": False}
        return {**clock, "available": True}
