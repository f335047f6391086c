"""
TTL cache with single-flight refresh.

Concurrent readers of a cold or expired key share one loader call instead of
each triggering their own refresh.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from loguru import logger


class TTLCache:
    """
    Async key/value cache whose entries expire after ``ttl_seconds``.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._generations: Dict[str, int] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        force: bool = False
    ) -> Any:
        """
        Return the cached value, or load it once under the key's lock.

        Args:
            key: Cache key
            loader: Coroutine factory producing a fresh value
            force: Bypass (and replace) any cached value

        Raises:
            Whatever ``loader`` raises; failures are not cached.
        """
        if not force:
            value = self.get(key)
            if value is not None:
                return value

        lock = self._lock_for(key)
        generation = self._generations.get(key, 0)
        async with lock:
            # Someone else refreshed while we waited
            if self._generations.get(key, 0) != generation and key in self._entries:
                return self._entries[key][1]
            if not force:
                value = self.get(key)
                if value is not None:
                    return value

            logger.debug(f"Cache refresh: {key}")
            value = await loader()
            self.set(key, value)
            self._generations[key] = self._generations.get(key, 0) + 1
            return value
