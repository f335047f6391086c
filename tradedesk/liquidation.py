"""
Portfolio reset: cancel every open order, then flatten every position when
the market is open.
"""
import asyncio
from typing import Awaitable, Callable, Dict, List, Sequence, Tuple

from loguru import logger

from tradedesk.logging_utils import log_error_with_context
from tradedesk.models import LiquidationSummary


class LiquidationController:
    """
    Two independent phases, each a bounded concurrent fan-out whose items
    succeed or fail on their own.
    """

    def __init__(self, client, clock, config: Dict = None):
        """
        Initialize liquidation controller.

        Args:
            client: AlpacaClient (or compatible broker)
            clock: MarketClock
            config: ``liquidation`` configuration section
        """
        config = config or {}
        self.client = client
        self.clock = clock
        self.max_concurrency = max(int(config.get('max_concurrency', 10)), 1)
        self.order_page_size = int(config.get('order_page_size', 500))
        self.max_order_pages = max(int(config.get('max_order_pages', 20)), 1)

    async def _fan_out(
        self,
        operation: Callable[[str], Awaitable[bool]],
        keys: Sequence[str],
        label: str
    ) -> Tuple[List[str], List[str]]:
        """
        Run ``operation`` for every key concurrently.

        Returns:
            Tuple of (succeeded_keys, failed_keys)
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def isolated(key: str) -> bool:
            async with semaphore:
                try:
                    return bool(await operation(key))
                except Exception as e:
                    log_error_with_context(e, f"{label} failed", key=key)
                    return False

        outcomes = await asyncio.gather(*(isolated(k) for k in keys))
        succeeded = [k for k, ok in zip(keys, outcomes) if ok]
        failed = [k for k, ok in zip(keys, outcomes) if not ok]
        return succeeded, failed

    async def _cancel_open_orders(self) -> Tuple[List[str], List[str]]:
        """
        Cancel open orders page by page until a short page comes back.

        Cancelled orders drop out of the open list, so each fetch returns the
        next page. A page with nothing new (every cancel failed) ends the loop.

        Returns:
            Tuple of (cancelled_ids, failed_ids)
        """
        cancelled: List[str] = []
        failed: List[str] = []
        attempted = set()

        for page_number in range(1, self.max_order_pages + 1):
            orders = await self.client.get_orders(status="open", limit=self.order_page_size)
            fresh = [o.id for o in orders if o.id not in attempted]
            if not fresh:
                if orders:
                    logger.warning(f"{len(orders)} open orders still listed after failed cancels")
                break

            logger.info(f"Cancelling {len(fresh)} open orders (page {page_number})...")
            attempted.update(fresh)
            ok, not_ok = await self._fan_out(self.client.cancel_order, fresh, "Cancel order")
            cancelled.extend(ok)
            failed.extend(not_ok)

            if len(orders) < self.order_page_size:
                break
        else:
            logger.warning(
                f"Stopped after {self.max_order_pages} pages of open orders - "
                f"some orders may remain open"
            )

        return cancelled, failed

    async def reset(self) -> LiquidationSummary:
        """
        Cancel all open orders and, market permitting, close all positions.

        Returns:
            LiquidationSummary with per-phase counts and the keys that failed
        """
        logger.warning("Resetting portfolio...")

        cancelled, cancel_failed = await self._cancel_open_orders()

        positions = await self.client.fetch_positions()
        positions_unavailable = positions is None
        if positions_unavailable:
            # Close whatever can still be read.
            positions = await self.client.get_positions()
        market_open = await self.clock.is_open()

        summary = LiquidationSummary(
            orders_cancelled=len(cancelled),
            orders_failed=cancel_failed,
            market_open=market_open,
            positions_unavailable=positions_unavailable,
        )

        if not positions:
            if positions_unavailable:
                summary.message = "Orders cancelled, but open positions could not be read"
            else:
                summary.message = "Portfolio reset complete: no open positions"
        elif not market_open:
            summary.positions_pending = len(positions)
            summary.message = (
                "Market is closed. Orders cancelled, but positions cannot be "
                "closed until market open."
            )
        else:
            logger.info(f"Closing {len(positions)} positions...")
            closed, close_failed = await self._fan_out(
                self.client.close_position, [p.symbol for p in positions], "Close position"
            )
            summary.positions_closed = len(closed)
            summary.positions_failed = close_failed
            summary.message = "Portfolio reset initiated"

        logger.info(
            f"Portfolio reset | cancelled={summary.orders_cancelled} "
            f"(failed {len(summary.orders_failed)}) | closed={summary.positions_closed} "
            f"(failed {len(summary.positions_failed)}) | pending={summary.positions_pending}"
        )
        return summary
