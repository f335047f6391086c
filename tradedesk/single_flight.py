"""
Per-account run lease so scheduled and manual triggers never overlap.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Optional

from loguru import logger


class RunInProgressError(Exception):
    """Another run already holds the lease for this account."""

    def __init__(self, key: str, holder: Optional[str] = None):
        super().__init__(f"A run is already in progress for {key} ({holder or 'unknown'})")
        self.key = key
        self.holder = holder


class SingleFlight:
    """
    Non-blocking mutex keyed on the trading account.

    A second caller does not wait; it gets ``RunInProgressError`` immediately.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, str] = {}
        self._since: Dict[str, datetime] = {}

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def holder(self, key: str) -> Optional[Dict[str, str]]:
        if not self.is_held(key):
            return None
        return {"holder": self._holders.get(key, ""), "since": self._since[key].isoformat()}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, key: str, holder: str = "") -> AsyncIterator[None]:
        lock = self._lock_for(key)
        if lock.locked():
            logger.warning(f"Run rejected for {key}: already held by {self._holders.get(key)}")
            raise RunInProgressError(key, self._holders.get(key))

        await lock.acquire()
        self._holders[key] = holder
        self._since[key] = datetime.now(timezone.utc)
        try:
            yield
        finally:
            self._holders.pop(key, None)
            self._since.pop(key, None)
            lock.release()
