"""
Keyed counters with an atomic bounded increment.

Backs the daily phone-call cap. The day is part of the key, so counters
roll over by key change (Redis keys also carry a TTL) instead of being
cleared.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class CounterStore(ABC):
    """Abstract store of integer counters."""

    @abstractmethod
    async def increment_if_below(self, key: str, cap: int) -> bool:
        """Increment ``key`` unless that would exceed ``cap``.

        Must never let the counter settle above ``cap``, even under
        concurrent callers.

        Returns:
            True if the increment was applied.
        """

    @abstractmethod
    async def get(self, key: str) -> int:
        """Current value (0 for a missing key)."""


class InMemoryCounterStore(CounterStore):
    """Process-local counters guarded by an asyncio.Lock."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def increment_if_below(self, key: str, cap: int) -> bool:
        async with self._lock:
            current = self._counts.get(key, 0)
            if current >= cap:
                return False
            self._counts[key] = current + 1
            return True

    async def get(self, key: str) -> int:
        return self._counts.get(key, 0)


class RedisCounterStore(CounterStore):
    """Redis counters: INCR, then a compensating DECR on overflow.

    Concurrent callers racing past the cap each undo their own increment,
    so the stored value never ends above the cap. A caller may be denied
    while another's increment is still being compensated; that slight
    under-count is acceptable.
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = 48 * 3600) -> None:
        self._redis = client
        self._ttl = ttl_seconds

    async def increment_if_below(self, key: str, cap: int) -> bool:
        value = await self._redis.incr(key)
        if value == 1:
            await self._redis.expire(key, self._ttl)
        if value > cap:
            await self._redis.decr(key)
            logger.debug("Counter %s at cap %d", key, cap)
            return False
        return True

    async def get(self, key: str) -> int:
        value = await self._redis.get(key)
        return int(value) if value else 0
