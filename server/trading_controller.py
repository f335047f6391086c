from datetime import datetime, timezone
from typing import Optional, Dict, Any

from loguru import logger

from tradedesk.main import TradingBot
from tradedesk.models import LiquidationSummary, RunStatus, RunSummary
from tradedesk.scheduler import TradingScheduler
from tradedesk.single_flight import RunInProgressError, SingleFlight


class TradingController:
    """
    Owns the TradingBot inside the FastAPI server.

    Every trigger (manual, cron endpoint, in-process scheduler) goes through
    the same per-account lease, so runs never overlap.
    """
    def __init__(self, bot: TradingBot, scheduler: Optional[TradingScheduler] = None):
        self.bot = bot
        self.lease = SingleFlight()
        self.scheduler = scheduler
        self._state: Dict[str, Any] = {
            "last_run": None,
            "last_reset": None,
            "last_error": None,
            "started_at": None,
        }
        if scheduler is not None:
            scheduler.register_handler("auto_trade", self._scheduled_run)
            scheduler.register_handler("reset_portfolio", self.reset_portfolio)

    @classmethod
    def from_config(cls, config: Dict[str, Any], **bot_kwargs) -> "TradingController":
        bot = TradingBot(config, **bot_kwargs)
        return cls(bot, TradingScheduler(config, notifier=bot.notifier))

    async def _scheduled_run(self) -> RunSummary:
        return await self.run_cycle(trigger="scheduled")

    async def run_cycle(self, trigger: str = "manual", force_refresh: bool = False) -> RunSummary:
        try:
            async with self.lease.hold(self.bot.account_key, holder=f"run:{trigger}"):
                summary = await self.bot.run(force_refresh=force_refresh, trigger=trigger)
        except RunInProgressError as e:
            return RunSummary(status=RunStatus.BUSY, message=str(e), trigger=trigger)
        except Exception as e:
            self._state["last_error"] = str(e)
            raise

        self._state["last_run"] = {
            "trigger": summary.trigger,
            "timestamp": summary.timestamp.isoformat(),
            "status": summary.status.value,
            "summary": summary.counts(),
        }
        return summary

    async def reset_portfolio(self) -> LiquidationSummary:
        """
        Raises:
            RunInProgressError: a run or another reset holds the account
        """
        try:
            async with self.lease.hold(self.bot.account_key, holder="reset"):
                summary = await self.bot.reset()
        except RunInProgressError:
            raise
        except Exception as e:
            self._state["last_error"] = str(e)
            raise

        self._state["last_reset"] = {
            "timestamp": summary.timestamp.isoformat(),
            "ordersCancelled": summary.orders_cancelled,
            "positionsClosed": summary.positions_closed,
            "positionsPending": summary.positions_pending,
            "success": summary.success,
        }
        return summary

    async def snapshot(self) -> Dict[str, Any]:
        return await self.bot.snapshot()

    def status(self) -> Dict[str, Any]:
        state = dict(self._state)
        state["running"] = self.lease.holder(self.bot.account_key)
        state["scheduler"] = self.scheduler.get_jobs() if self.scheduler is not None else []
        return state

    def start(self) -> None:
        self._state["started_at"] = datetime.now(timezone.utc).isoformat()
        if self.scheduler is not None:
            self.scheduler.start()

    async def aclose(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()
        try:
            await self.bot.aclose()
        except Exception as e:
            logger.warning(f"Close failed: {e}")
