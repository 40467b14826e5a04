"""
Retry and counter primitives shared by delivery and the volume limiter.

Classes:
    ExponentialBackoff: Jittered exponential delays
    CounterStore: Keyed counters with an atomic bounded increment
    InMemoryCounterStore / RedisCounterStore: Implementations

Functions:
    retry_async: Retry an awaitable on transient errors

Example:
    from src.queues import ExponentialBackoff, retry_async

    result = await retry_async(
        send,
        attempts=3,
        backoff=ExponentialBackoff(base_delay=0.5),
        retry_on=(httpx.TransportError,),
    )
"""

from src.queues.backoff import ExponentialBackoff, retry_async
from src.queues.counters import CounterStore, InMemoryCounterStore, RedisCounterStore

__all__ = [
    "CounterStore",
    "ExponentialBackoff",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "retry_async",
]
