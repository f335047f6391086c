"""
Scan-and-trade execution cycle with bracket order support.
"""
import asyncio
import math
from typing import Dict, List, Optional, Tuple

from loguru import logger

from tradedesk.alpaca_client import calculate_bracket_prices
from tradedesk.config import as_bool, as_float, as_int
from tradedesk.logging_utils import log_error_with_context, log_trade
from tradedesk.models import (
    CandidatePick,
    ExecutionResult,
    RunStatus,
    RunSummary,
    TradeDecision,
    TradeStatus,
)
from tradedesk.risk_manager import RiskGate
from tradedesk.signal_source import SignalSource, SignalSourceError

REASON_INSUFFICIENT_BUYING_POWER = "insufficient buying power"
REASON_NO_PRICE = "could not get price"
REASON_PRICE_TOO_HIGH = "price too high"
REASON_SUBMISSION_FAILED = "order submission failed"


def calculate_quantity(trade_amount: float, price: float) -> int:
    """Whole shares affordable with ``trade_amount`` at ``price``."""
    if price <= 0:
        return 0
    return math.floor(trade_amount / price)


class ExecutionCoordinator:
    """
    Runs one scan-and-trade cycle per trigger.

    Market check, account/position fetch, scan, risk gate, then strictly
    sequential per-candidate sizing and bracket submission in ranked order.
    """

    def __init__(
        self,
        client,
        clock,
        signal_source: SignalSource,
        risk_gate: RiskGate,
        config: Dict,
        notifier=None
    ):
        """
        Initialize execution coordinator.

        Args:
            client: AlpacaClient (or compatible broker)
            clock: MarketClock
            signal_source: Produces ranked CandidatePicks
            risk_gate: Filters candidates into the admissible set
            config: ``trading`` configuration section
            notifier: Optional NotificationService for submitted trades
        """
        self.client = client
        self.clock = clock
        self.signal_source = signal_source
        self.risk_gate = risk_gate
        self.config = config
        self.notifier = notifier

        self.enabled = as_bool(config.get('auto_trade_enabled'), True)
        self.trade_amount = as_float(config.get('trade_amount'), 1000.0)
        self.stop_loss_pct = as_float(config.get('stop_loss_pct'), 0.10)
        self.take_profit_pct = as_float(config.get('take_profit_pct'), 0.25)
        self.max_positions = as_int(config.get('max_positions'), 5)
        self.track_buying_power = as_bool(config.get('track_buying_power'), True)

        logger.info(
            f"ExecutionCoordinator initialized | "
            f"Enabled: {self.enabled}, "
            f"Trade amount: ${self.trade_amount:,.2f}, "
            f"Stop: {self.stop_loss_pct:.0%}, Target: {self.take_profit_pct:.0%}, "
            f"Max positions: {self.max_positions}"
        )

    async def run(self, force_refresh: bool = False, trigger: str = "manual") -> RunSummary:
        """
        Execute one scan-and-trade cycle.

        Args:
            force_refresh: Ask the signal source to bypass its cache
            trigger: Label of what started the run ("manual", "scheduled", ...)

        Returns:
            RunSummary describing the outcome and every per-candidate result
        """
        logger.info(f"Auto-trade cycle starting | trigger={trigger}")

        if not self.enabled:
            logger.warning("Automated execution is disabled - skipping cycle")
            return RunSummary(
                status=RunStatus.DISABLED,
                message="Automated trading is disabled",
                trigger=trigger,
            )

        if not await self.clock.is_open():
            logger.info("Market is closed - no entries placed")
            return RunSummary(
                status=RunStatus.MARKET_CLOSED,
                message="Market is closed. Trades can only execute during market hours.",
                trigger=trigger,
                market_open=False,
            )

        account = await self.client.get_account()
        if account is None:
            logger.error("Failed to get account - aborting cycle")
            return RunSummary(
                status=RunStatus.ACCOUNT_UNAVAILABLE,
                message="Failed to connect to brokerage account",
                trigger=trigger,
                market_open=True,
            )

        positions = await self.client.fetch_positions()
        if positions is None:
            logger.error("Failed to get positions - aborting cycle")
            return RunSummary(
                status=RunStatus.ACCOUNT_UNAVAILABLE,
                message="Failed to read current positions",
                trigger=trigger,
                market_open=True,
                buying_power=account.buying_power,
            )
        open_count = len(positions)
        logger.info(
            f"Current positions: {open_count}/{self.max_positions} | "
            f"Buying power: ${account.buying_power:,.2f}"
        )

        base = dict(
            trigger=trigger,
            market_open=True,
            buying_power=account.buying_power,
            current_positions=open_count,
            max_positions=self.max_positions,
        )

        if open_count >= self.max_positions:
            return RunSummary(
                status=RunStatus.MAX_POSITIONS,
                message="Maximum positions reached",
                **base
            )

        try:
            candidates = await self.signal_source.scan(force_refresh)
        except SignalSourceError as e:
            logger.error(f"Signal scan failed: {e}")
            return RunSummary(status=RunStatus.SCAN_FAILED, message=str(e), **base)

        eligible = self.risk_gate.filter(candidates, positions)
        if not eligible:
            return RunSummary(
                status=RunStatus.NO_CANDIDATES,
                message="No eligible picks found",
                **base
            )

        trades, decisions = await self._execute_sequentially(eligible, account.buying_power)

        summary = RunSummary(
            status=RunStatus.COMPLETED,
            message=f"Auto-trade cycle completed: {sum(1 for t in trades if t.status == TradeStatus.SUBMITTED)} submitted",
            trades=trades,
            decisions=decisions,
            **base
        )
        summary.notification_sent = await self._notify(summary, eligible)

        logger.info(f"Auto-trade cycle finished | {summary.counts()}")
        return summary

    async def _execute_sequentially(
        self,
        picks: List[CandidatePick],
        buying_power: float
    ) -> Tuple[List[ExecutionResult], List[TradeDecision]]:
        """
        Process picks one at a time in priority order.

        Buying power is a shared resource across the loop: with
        ``track_buying_power`` enabled it is decremented by the estimated cost
        of every submitted order, otherwise the start-of-run snapshot is reused.
        """
        remaining = buying_power
        trades: List[ExecutionResult] = []
        decisions: List[TradeDecision] = []

        for pick in picks:
            try:
                result, decision = await self._execute_candidate(pick, remaining)
            except Exception as e:
                log_error_with_context(e, "Unexpected error executing candidate", symbol=pick.symbol)
                result, decision = ExecutionResult(
                    symbol=pick.symbol,
                    status=TradeStatus.FAILED,
                    reason=REASON_SUBMISSION_FAILED,
                ), None

            trades.append(result)
            if decision is not None:
                decisions.append(decision)
                if self.track_buying_power:
                    remaining -= decision.estimated_cost

        return trades, decisions

    async def _execute_candidate(
        self,
        pick: CandidatePick,
        buying_power: float
    ) -> Tuple[ExecutionResult, Optional[TradeDecision]]:
        symbol = pick.symbol

        if buying_power < self.trade_amount:
            logger.info(f"Insufficient buying power for {symbol}: ${buying_power:,.2f}")
            return ExecutionResult(
                symbol=symbol,
                status=TradeStatus.SKIPPED,
                reason=REASON_INSUFFICIENT_BUYING_POWER,
            ), None

        price = await self.client.get_latest_price(symbol)
        if not price:
            return ExecutionResult(
                symbol=symbol,
                status=TradeStatus.SKIPPED,
                reason=REASON_NO_PRICE,
            ), None

        qty = calculate_quantity(self.trade_amount, price)
        if qty <= 0:
            logger.info(f"Price too high for {symbol}: ${price:,.2f} > ${self.trade_amount:,.2f}")
            return ExecutionResult(
                symbol=symbol,
                status=TradeStatus.SKIPPED,
                reason=REASON_PRICE_TOO_HIGH,
            ), None

        order = await self.client.submit_bracket_order(
            symbol, qty, self.stop_loss_pct, self.take_profit_pct
        )
        if order is None:
            return ExecutionResult(
                symbol=symbol,
                status=TradeStatus.FAILED,
                reason=REASON_SUBMISSION_FAILED,
            ), None

        estimated_cost = round(qty * price, 2)
        stop_price, limit_price = calculate_bracket_prices(price, self.stop_loss_pct, self.take_profit_pct)
        if order.stop_loss is not None:
            stop_price = order.stop_loss.stop_price
        if order.take_profit is not None:
            limit_price = order.take_profit.limit_price

        log_trade(
            action="BRACKET_SUBMITTED",
            symbol=symbol,
            qty=qty,
            price=price,
            order_id=order.id,
            stop=stop_price,
            target=limit_price,
            score=pick.score,
        )

        decision = TradeDecision(
            symbol=symbol,
            qty=qty,
            estimated_cost=estimated_cost,
            stop_price=stop_price,
            limit_price=limit_price,
        )

        return ExecutionResult(
            symbol=symbol,
            status=TradeStatus.SUBMITTED,
            order_id=order.id,
            qty=qty,
            estimated_cost=estimated_cost,
            stop_price=stop_price,
            limit_price=limit_price,
            stop_loss_pct=self.stop_loss_pct,
            take_profit_pct=self.take_profit_pct,
        ), decision

    async def _notify(self, summary: RunSummary, picks: List[CandidatePick]) -> Optional[bool]:
        """Best-effort alert for submitted trades; never fails the run."""
        submitted = [t for t in summary.trades if t.status == TradeStatus.SUBMITTED]
        if not submitted or self.notifier is None:
            return None

        scores = {p.symbol: p.score for p in picks}
        stocks = [
            {'symbol': t.symbol, 'signal': 'BUY', 'strength': round(scores.get(t.symbol, 0))}
            for t in submitted
        ]
        subject = f"Auto-Trade: Executed {len(submitted)} Trades"
        message = (
            f"Auto-trade cycle completed. Executed {len(submitted)} trades "
            f"based on conviction scan."
        )

        try:
            return bool(await asyncio.to_thread(self.notifier.send_alert, subject, message, stocks))
        except Exception as e:
            log_error_with_context(e, "Trade notification failed")
            return False
