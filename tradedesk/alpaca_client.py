"""
Alpaca REST client with soft-failure semantics.

Every public operation logs and returns ``None`` / ``[]`` / ``False`` on
connectivity problems instead of raising, so callers can keep iterating.
"""
import asyncio
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

import httpx
from loguru import logger

from tradedesk.models import Account, Order, OrderSide, Position, StopLoss, TakeProfit

PAPER_API_URL = "https://paper-api.alpaca.markets"
DATA_API_URL = "https://data.alpaca.markets"


class BrokerConnectivityError(Exception):
    """Broker unreachable, timed out, or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def round_to_cents(value: float) -> float:
    """Round half-up to two decimals."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def calculate_bracket_prices(
    entry_price: float,
    stop_loss_pct: float,
    take_profit_pct: float
) -> Tuple[float, float]:
    """
    Calculate the stop-loss and take-profit prices of a long bracket.

    Returns:
        Tuple of (stop_price, limit_price)
    """
    stop_price = round_to_cents(entry_price * (1 - stop_loss_pct))
    limit_price = round_to_cents(entry_price * (1 + take_profit_pct))
    return stop_price, limit_price


class AlpacaClient:
    """
    Async wrapper for the Alpaca trading and market data REST APIs.
    """

    def __init__(
        self,
        key_id: str,
        secret_key: str,
        base_url: str = PAPER_API_URL,
        data_url: str = DATA_API_URL,
        data_feed: str = "iex",
        request_timeout_seconds: float = 10.0,
        read_retries: int = 2,
        retry_delay_seconds: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize Alpaca client.

        Args:
            key_id: API key ID
            secret_key: API secret key
            base_url: Trading API base URL (paper or live)
            data_url: Market data API base URL
            data_feed: Quote feed ("iex" or "sip")
            request_timeout_seconds: Per-request timeout
            read_retries: Extra attempts for idempotent GET requests
            retry_delay_seconds: Base delay between GET retries (doubles per attempt)
            transport: Optional httpx transport (used by tests)
        """
        self.key_id = key_id
        self.base_url = base_url.rstrip("/")
        self.data_url = data_url.rstrip("/")
        self.data_feed = data_feed
        self.read_retries = max(int(read_retries), 0)
        self.retry_delay_seconds = retry_delay_seconds

        self._http = httpx.AsyncClient(
            headers={
                "APCA-API-KEY-ID": key_id,
                "APCA-API-SECRET-KEY": secret_key,
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(request_timeout_seconds),
            transport=transport,
        )
        logger.info(f"Alpaca client initialized: {self.base_url}")

    @classmethod
    def from_config(cls, config: Dict[str, Any], **kwargs) -> "AlpacaClient":
        """Build a client from the ``alpaca`` config section."""
        return cls(
            key_id=config["key_id"],
            secret_key=config["secret_key"],
            base_url=config.get("base_url") or PAPER_API_URL,
            data_url=config.get("data_url") or DATA_API_URL,
            data_feed=config.get("data_feed", "iex"),
            request_timeout_seconds=float(config.get("request_timeout_seconds", 10)),
            read_retries=int(config.get("read_retries", 2)),
            retry_delay_seconds=float(config.get("retry_delay_seconds", 0.5)),
            **kwargs
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "AlpacaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """
        Send a request, retrying idempotent GETs on transport errors and 5xx/429.

        Raises:
            BrokerConnectivityError: If the request cannot be completed successfully
        """
        retries = self.read_retries if method == "GET" else 0

        for attempt in range(retries + 1):
            try:
                response = await self._http.request(method, url, params=params, json=json)
            except httpx.HTTPError as e:
                if attempt < retries:
                    logger.warning(
                        f"{method} {url} error (attempt {attempt + 1}/{retries + 1}): {e!r}"
                    )
                    await asyncio.sleep(self.retry_delay_seconds * (2 ** attempt))
                    continue
                raise BrokerConnectivityError(f"{method} {url} failed: {e!r}") from e

            if response.is_success:
                return response

            retryable = response.status_code == 429 or response.status_code >= 500
            if retryable and attempt < retries:
                logger.warning(
                    f"{method} {url} returned {response.status_code} "
                    f"(attempt {attempt + 1}/{retries + 1})"
                )
                await asyncio.sleep(self.retry_delay_seconds * (2 ** attempt))
                continue

            raise BrokerConnectivityError(
                f"{method} {url} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        # Loop always returns or raises
        raise BrokerConnectivityError(f"{method} {url} failed")

    async def connect(self) -> bool:
        """Verify credentials by fetching the account."""
        account = await self.get_account()
        if account is None:
            logger.warning("Could not verify Alpaca credentials")
            return False
        logger.info(f"Connected to Alpaca API | Account: {account.account_number}")
        return True

    async def get_account(self) -> Optional[Account]:
        """
        Get account information.

        Returns:
            Account or None on failure
        """
        try:
            response = await self._request("GET", f"{self.base_url}/v2/account")
            return Account.from_api(response.json())
        except (BrokerConnectivityError, ValueError, KeyError) as e:
            logger.error(f"Error getting account: {e}")
            return None

    async def fetch_positions(self) -> Optional[List[Position]]:
        """
        Get current positions, or ``None`` when the full set cannot be read.

        Unlike ``get_positions`` this distinguishes "no positions" from "the
        broker could not be asked", so capacity checks can fail closed.
        """
        try:
            response = await self._request("GET", f"{self.base_url}/v2/positions")
            rows = response.json()
        except (BrokerConnectivityError, ValueError) as e:
            logger.error(f"Error getting positions: {e}")
            return None

        positions = self._parse_positions(rows)
        if len(positions) != len(rows):
            logger.error(
                f"Only {len(positions)} of {len(rows)} positions could be read - "
                f"position set unknown"
            )
            return None
        return positions

    async def get_positions(self) -> List[Position]:
        """
        Get current positions.

        A row that cannot be parsed is logged and skipped; the rest are kept.

        Returns:
            List of Position objects (empty on failure)
        """
        try:
            response = await self._request("GET", f"{self.base_url}/v2/positions")
            return self._parse_positions(response.json())
        except (BrokerConnectivityError, ValueError) as e:
            logger.error(f"Error getting positions: {e}")
            return []

    @staticmethod
    def _parse_positions(rows: List[Dict[str, Any]]) -> List[Position]:
        positions = []
        for row in rows:
            try:
                positions.append(Position.from_api(row))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable position {row.get('symbol', '?')}: {e}")
        return positions

    async def get_orders(self, status: str = "all", limit: int = 50) -> List[Order]:
        """
        Get orders, newest first.

        Args:
            status: Order status filter ("open", "closed", "all")
            limit: Maximum number of orders to return

        Returns:
            List of Order objects (empty on failure)
        """
        try:
            response = await self._request(
                "GET",
                f"{self.base_url}/v2/orders",
                params={"status": status, "limit": limit, "direction": "desc"},
            )
            return [Order.from_api(o) for o in response.json()]
        except (BrokerConnectivityError, ValueError, KeyError) as e:
            logger.error(f"Error getting orders: {e}")
            return []

    async def get_clock(self) -> Optional[Dict[str, Any]]:
        """
        Get market clock information.

        Returns:
            Dict with is_open, next_open, next_close or None on failure
        """
        try:
            response = await self._request("GET", f"{self.base_url}/v2/clock")
            data = response.json()
            return {
                "is_open": data.get("is_open") is True,
                "next_open": data.get("next_open"),
                "next_close": data.get("next_close"),
                "timestamp": data.get("timestamp"),
            }
        except (BrokerConnectivityError, ValueError) as e:
            logger.error(f"Error getting clock: {e}")
            return None

    async def get_latest_price(self, symbol: str) -> Optional[float]:
        """
        Get the mid of the best bid/ask from the latest quote.

        Args:
            symbol: Stock symbol

        Returns:
            Mid price or None if the quote is unavailable
        """
        try:
            response = await self._request(
                "GET",
                f"{self.data_url}/v2/stocks/{symbol}/quotes/latest",
                params={"feed": self.data_feed},
            )
            quote = response.json().get("quote") or {}
        except (BrokerConnectivityError, ValueError) as e:
            logger.error(f"Error getting price for {symbol}: {e}")
            return None

        ask = quote.get("ap")
        bid = quote.get("bp")
        if not ask or not bid:
            logger.warning(f"Incomplete quote for {symbol}: ask={ask}, bid={bid}")
            return None
        return (float(ask) + float(bid)) / 2

    async def submit_bracket_order(
        self,
        symbol: str,
        qty: int,
        stop_loss_pct: float,
        take_profit_pct: float
    ) -> Optional[Order]:
        """
        Submit a market buy with attached stop-loss and take-profit legs.

        Args:
            symbol: Stock symbol
            qty: Whole shares to buy
            stop_loss_pct: Stop distance below entry (0.10 = 10%)
            take_profit_pct: Target distance above entry (0.25 = 25%)

        Returns:
            Order or None on failure
        """
        if qty <= 0:
            logger.error(f"Invalid quantity for {symbol}: {qty}")
            return None

        price = await self.get_latest_price(symbol)
        if not price:
            logger.error(f"Could not get price for {symbol}")
            return None

        stop_price, limit_price = calculate_bracket_prices(price, stop_loss_pct, take_profit_pct)
        if not stop_price < price < limit_price:
            logger.error(
                f"Bracket prices out of order for {symbol}: "
                f"stop={stop_price}, entry={price}, target={limit_price}"
            )
            return None

        payload = {
            "symbol": symbol,
            "qty": str(qty),
            "side": OrderSide.BUY.value,
            "type": "market",
            "time_in_force": "gtc",
            "order_class": "bracket",
            "stop_loss": {"stop_price": str(stop_price)},
            "take_profit": {"limit_price": str(limit_price)},
        }

        logger.info(
            f"ORDER | Submitting bracket | {symbol} | qty={qty} | entry=${price:.2f} | "
            f"stop=${stop_price:.2f} (-{stop_loss_pct * 100:g}%) | "
            f"target=${limit_price:.2f} (+{take_profit_pct * 100:g}%)"
        )

        try:
            response = await self._request("POST", f"{self.base_url}/v2/orders", json=payload)
            order = Order.from_api(response.json())
        except BrokerConnectivityError as e:
            logger.error(f"Order error for {symbol}: {e.body or e}")
            return None
        except (ValueError, KeyError) as e:
            logger.error(f"Unreadable order response for {symbol}: {e}")
            return None

        # Fill in legs the response did not echo back
        if order.stop_loss is None or order.take_profit is None:
            order = order.model_copy(update={
                "stop_loss": order.stop_loss or StopLoss(stop_price=stop_price),
                "take_profit": order.take_profit or TakeProfit(limit_price=limit_price),
            })
        logger.info(f"ORDER | Submitted | {symbol} | id={order.id}")
        return order

    async def cancel_order(self, order_id: str) -> bool:
        """
        Cancel an order.

        Returns:
            True if successful, False otherwise
        """
        try:
            await self._request("DELETE", f"{self.base_url}/v2/orders/{order_id}")
            logger.info(f"ORDER | Cancelled | id={order_id}")
            return True
        except BrokerConnectivityError as e:
            logger.error(f"Failed to cancel order {order_id}: {e}")
            return False

    async def close_position(self, symbol: str) -> bool:
        """
        Liquidate the full position with a market order.

        Returns:
            True if successful, False otherwise
        """
        try:
            await self._request("DELETE", f"{self.base_url}/v2/positions/{symbol}")
            logger.info(f"ORDER | Position close submitted | {symbol}")
            return True
        except BrokerConnectivityError as e:
            logger.error(f"Failed to close position for {symbol}: {e}")
            return False
