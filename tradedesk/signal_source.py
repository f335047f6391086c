"""
Signal source collaborators: where ranked candidates come from.
"""
from typing import Any, Dict, List, Optional, Protocol

import httpx
from loguru import logger
from pydantic import ValidationError

from tradedesk.cache import TTLCache
from tradedesk.models import CandidatePick


class SignalSourceError(Exception):
    """The signal source could not produce a candidate list."""


class SignalSource(Protocol):
    async def scan(self, force_refresh: bool = False) -> List[CandidatePick]:
        ...


def pick_from_scanner(item: Dict[str, Any]) -> CandidatePick:
    """
    Map one conviction scanner row to a CandidatePick.

    The trend is read from ``trend``, then ``metrics.trend``, then the
    textual ``signal`` ("Strong Buy", "Bullish", ...).
    """
    metrics = item.get("metrics") or {}
    trend = item.get("trend") or metrics.get("trend") or item.get("signal")
    return CandidatePick(
        symbol=item["symbol"],
        score=float(item.get("score") or 0),
        trend=trend,
        sector=item.get("sector"),
    )


class HttpSignalSource:
    """
    Fetches the conviction scanner's JSON list over HTTP.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.url = url
        self._http = httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds), transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def scan(self, force_refresh: bool = False) -> List[CandidatePick]:
        params = {"refresh": "true"} if force_refresh else None
        try:
            response = await self._http.get(self.url, params=params)
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SignalSourceError(f"Failed to fetch conviction data: {e!r}") from e

        if isinstance(rows, dict):
            rows = rows.get("results") or rows.get("stocks") or []
        if not isinstance(rows, list):
            raise SignalSourceError("Conviction data is not a list")

        picks = []
        for row in rows:
            try:
                picks.append(pick_from_scanner(row))
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                logger.warning(f"Skipping malformed scanner row {row!r}: {e}")

        logger.info(f"Signal scan returned {len(picks)} candidates")
        return picks


class CachedSignalSource:
    """
    Wraps a signal source with a TTL cache; ``force_refresh`` bypasses it.
    """

    CACHE_KEY = "scan"

    def __init__(self, source: SignalSource, ttl_seconds: float = 300.0, cache: Optional[TTLCache] = None):
        self.source = source
        self.cache = cache or TTLCache(ttl_seconds)

    async def scan(self, force_refresh: bool = False) -> List[CandidatePick]:
        return await self.cache.get_or_load(
            self.CACHE_KEY,
            lambda: self.source.scan(force_refresh),
            force=force_refresh,
        )

    async def aclose(self) -> None:
        closer = getattr(self.source, "aclose", None)
        if closer is not None:
            await closer()
