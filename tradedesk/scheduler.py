"""
Scheduler for timer-triggered trading tasks.
Runs the auto-trade cycle and portfolio reset on the event loop.
"""
import asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from typing import Dict, Any, Awaitable, Callable, List, Optional, Union
from loguru import logger
import pytz

from tradedesk.config import as_bool

Handler = Callable[[], Union[Awaitable[Any], Any]]


class TradingScheduler:
    """
    Manages scheduled tasks. Each task is a named list of actions; every
    action maps to a registered handler (sync or async).
    """

    def __init__(self, config: Dict[str, Any], notifier=None):
        """
        Initialize scheduler.

        Args:
            config: Full configuration (reads the ``scheduler`` section)
            notifier: Optional AlertNotifier for failed actions
        """
        self.config = config
        scheduler_config = config.get('scheduler', {}) or {}

        self.enabled = as_bool(scheduler_config.get('enabled'), False)
        self.timezone = pytz.timezone(scheduler_config.get('timezone', 'America/New_York'))
        self.tasks_config = scheduler_config.get('tasks', {}) or {}

        self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        self.task_handlers: Dict[str, Handler] = {}
        self.notifier = notifier

        logger.info(f"TradingScheduler initialized | Enabled: {self.enabled}, TZ: {self.timezone}")

    def register_handler(self, action: str, handler: Handler) -> None:
        """
        Register a handler for a specific action.

        Args:
            action: Action name (e.g., 'auto_trade', 'reset_portfolio')
            handler: Callable (or coroutine function) to execute for this action
        """
        self.task_handlers[action] = handler
        logger.info(f"Registered handler for action: {action}")

    def _alert(self, subject: str, message: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.send_alert(subject, message, severity="warning")
        except Exception as e:
            logger.error(f"Failed to send scheduler alert: {e}")

    async def _execute_task(self, task_name: str, actions: List[str]) -> List[str]:
        """
        Execute a scheduled task by running its actions in order.

        Args:
            task_name: Name of the task
            actions: List of action names to execute

        Returns:
            Names of the actions that failed
        """
        logger.info(f"Executing scheduled task: {task_name}")

        failed_actions = []

        for action in actions:
            handler = self.task_handlers.get(action)
            if handler is None:
                logger.warning(f"No handler registered for action: {action}")
                continue

            try:
                logger.info(f"Running action: {action}")
                result = handler()
                if asyncio.iscoroutine(result):
                    await result
                logger.info(f"Action completed: {action}")
            except Exception as e:
                logger.opt(exception=e).error(f"Error in action {action}: {e}")
                failed_actions.append(action)
                self._alert(
                    f"Scheduled Task Failed: {action}",
                    f"Action '{action}' in task '{task_name}' failed: {e}"
                )

        logger.info(f"Task completed: {task_name}")

        if failed_actions:
            self._alert(
                f"Task Completed with Failures: {task_name}",
                f"Task '{task_name}' completed with {len(failed_actions)} failed actions: "
                f"{', '.join(failed_actions)}"
            )
        return failed_actions

    def _trigger_for(self, task_config: Dict[str, Any]) -> CronTrigger:
        hour, minute = map(int, str(task_config.get('time', '09:45')).split(':'))
        return CronTrigger(
            hour=hour,
            minute=minute,
            day_of_week=task_config.get('days', 'mon-fri'),
            timezone=self.timezone
        )

    def start(self) -> None:
        """Start the scheduler with configured tasks. Must run inside an event loop."""
        if not self.enabled:
            logger.info("Scheduler is disabled")
            return

        for name, task_config in self.tasks_config.items():
            task_config = task_config or {}
            if not as_bool(task_config.get('enabled'), False):
                continue
            actions = task_config.get('actions') or [name]

            self.scheduler.add_job(
                func=self._execute_task,
                args=[name, list(actions)],
                trigger=self._trigger_for(task_config),
                id=name,
                name=task_config.get('name', name),
                replace_existing=True,
                max_instances=1,
                coalesce=True
            )
            logger.info(f"Scheduled task {name} at {task_config.get('time')} ({task_config.get('days', 'mon-fri')})")

        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def get_jobs(self) -> List[Dict[str, Optional[str]]]:
        """
        Get list of scheduled jobs.

        Returns:
            List of job information dicts
        """
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, 'next_run_time', None)
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run': next_run.isoformat() if next_run else None,
                'trigger': str(job.trigger)
            })
        return jobs
