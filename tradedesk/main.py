"""
Trading bot orchestration and command line entry point.
"""
import argparse
import asyncio
import json
import sys
from typing import Any, Dict

from loguru import logger

from tradedesk.alpaca_client import AlpacaClient
from tradedesk.config import as_bool, as_float, load_config, validate_config
from tradedesk.execution_engine import ExecutionCoordinator
from tradedesk.liquidation import LiquidationController
from tradedesk.logging_utils import setup_logging
from tradedesk.market_clock import MarketClock
from tradedesk.models import LiquidationSummary, RunSummary
from tradedesk.notifier import AlertNotifier
from tradedesk.risk_manager import RiskGate
from tradedesk.signal_source import CachedSignalSource, HttpSignalSource

SNAPSHOT_ORDER_FETCH = 20
SNAPSHOT_ORDER_LIMIT = 10


def configure_logging(config: Dict[str, Any]) -> None:
    logging_config = config.get('logging', {}) or {}
    setup_logging(
        logs_dir=(config.get('storage', {}) or {}).get('logs_dir', 'logs'),
        level=logging_config.get('level', 'INFO'),
        rotation=logging_config.get('rotation', '1 day'),
        retention=logging_config.get('retention', '30 days'),
        format_type=logging_config.get('format', 'text'),
        enable_console=as_bool(logging_config.get('console'), True),
    )


class TradingBot:
    """
    Owns the engine components for one brokerage account.

    Collaborators can be injected (tests, alternative brokers); anything left
    out is built from the configuration.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        client=None,
        signal_source=None,
        notifier=None
    ):
        """
        Initialize trading bot.

        Args:
            config: Full configuration dictionary
            client: BrokerClient; defaults to an AlpacaClient from ``alpaca``
            signal_source: SignalSource; defaults to the cached HTTP scanner
            notifier: NotificationService; defaults to AlertNotifier from ``alerts``
        """
        self.config = config

        self.client = client or AlpacaClient.from_config(config['alpaca'])
        self.clock = MarketClock(self.client)

        if signal_source is None:
            signals = config.get('signals', {}) or {}
            signal_source = CachedSignalSource(
                HttpSignalSource(
                    signals.get('url', 'http://localhost:3000/api/conviction'),
                    timeout_seconds=as_float(signals.get('timeout_seconds'), 60.0),
                ),
                ttl_seconds=as_float(signals.get('cache_ttl_seconds'), 300.0),
            )
        self.signal_source = signal_source

        self.notifier = notifier if notifier is not None else AlertNotifier(config.get('alerts', {}))
        self.risk_gate = RiskGate.from_config(config)

        self.coordinator = ExecutionCoordinator(
            self.client,
            self.clock,
            self.signal_source,
            self.risk_gate,
            config.get('trading', {}) or {},
            notifier=self.notifier,
        )
        self.liquidation = LiquidationController(
            self.client,
            self.clock,
            config.get('liquidation', {}) or {},
        )

    @property
    def account_key(self) -> str:
        """Key for the per-account run lease."""
        return str((self.config.get('alpaca', {}) or {}).get('key_id') or 'default')

    async def run(self, force_refresh: bool = False, trigger: str = "manual") -> RunSummary:
        return await self.coordinator.run(force_refresh=force_refresh, trigger=trigger)

    async def reset(self) -> LiquidationSummary:
        return await self.liquidation.reset()

    async def snapshot(self) -> Dict[str, Any]:
        """
        Current account state for display.

        Returns:
            Dict with account (None when unreachable), positions, the ten most
            recent orders and the market clock
        """
        account = await self.client.get_account()
        positions = await self.client.get_positions()
        orders = await self.client.get_orders(status="all", limit=SNAPSHOT_ORDER_FETCH)
        clock = await self.clock.status()

        return {
            'account': account.to_dict() if account else None,
            'positions': [p.to_dict() for p in positions],
            'recentOrders': [o.to_dict() for o in orders[:SNAPSHOT_ORDER_LIMIT]],
            'marketOpen': clock.get('is_open', False),
            'clock': clock,
        }

    async def aclose(self) -> None:
        for component in (self.signal_source, self.client):
            closer = getattr(component, 'aclose', None)
            if closer is not None:
                await closer()


async def _run_command(bot: TradingBot, command: str, force_refresh: bool) -> Dict[str, Any]:
    try:
        if command == 'run':
            return (await bot.run(force_refresh=force_refresh, trigger="cli")).to_dict()
        if command == 'reset':
            return (await bot.reset()).to_dict()
        return await bot.snapshot()
    finally:
        await bot.aclose()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Automated trading execution engine")
    parser.add_argument(
        'command',
        choices=['run', 'reset', 'snapshot'],
        help='run: one scan-and-trade cycle | reset: cancel orders and close positions | snapshot: account state'
    )
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to configuration file (default: config/config.yaml or $TRADING_CONFIG_PATH)'
    )
    parser.add_argument(
        '--force-refresh',
        action='store_true',
        help='Bypass the cached scanner results'
    )
    args = parser.parse_args()

    config = load_config(args.config)
    validate_config(config)
    configure_logging(config)

    logger.info("=" * 80)
    logger.info(f"TradeDesk {args.command}")
    logger.info("=" * 80)

    bot = TradingBot(config)
    result = asyncio.run(_run_command(bot, args.command, args.force_refresh))
    print(json.dumps(result, indent=2, default=str))

    if result.get('success') is False:
        sys.exit(1)


if __name__ == "__main__":
    main()
