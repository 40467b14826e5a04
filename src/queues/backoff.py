"""
Exponential backoff and a small async retry helper.

Channel transports and the volume counter retry transient failures with
the same policy: exponentially growing, jittered delays and a bounded
number of attempts.
"""

import asyncio
import copy
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExponentialBackoff:
    """
    Exponential backoff with jitter.

    Computes delays as: min(base * multiplier^attempt, max_delay) + jitter.
    Call reset() after a successful operation to zero the attempt counter.

    Usage:
        backoff = ExponentialBackoff(base_delay=0.5, max_delay=10.0)
        for _ in range(attempts):
            try:
                return await send()
            except httpx.TransportError:
                await asyncio.sleep(backoff.next_delay())
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
        jitter_range: float = 0.5,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter_range = jitter_range
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """Current attempt count."""
        return self._attempt

    def next_delay(self) -> float:
        """Calculate and return the next delay, incrementing the attempt counter."""
        delay = min(
            self.base_delay * (self.multiplier ** self._attempt),
            self.max_delay,
        )
        # Random jitter: +/- jitter_range fraction of delay
        jitter = delay * random.uniform(-self.jitter_range, self.jitter_range)
        delay = max(0, delay + jitter)
        self._attempt += 1
        return delay

    def reset(self) -> None:
        """Reset the attempt counter after a successful operation."""
        self._attempt = 0


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    backoff: ExponentialBackoff,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or ``attempts`` are exhausted.

    Args:
        operation: Zero-argument coroutine factory.
        attempts: Maximum number of calls (>= 1).
        backoff: Delay policy between calls. Each call advances its own
            fresh copy, so one instance can be shared by concurrent callers.
        retry_on: Exception types considered transient.
        label: Name used in log messages.

    Returns:
        The operation's result.

    Raises:
        The last transient exception once attempts are exhausted; any
        non-transient exception immediately.
    """
    backoff = copy.copy(backoff)
    backoff.reset()
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt >= attempts:
                logger.warning(
                    "%s failed after %d attempts: %s", label, attempts, e,
                )
                raise
            delay = backoff.next_delay()
            logger.info(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                label, attempt, attempts, delay, e,
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")
