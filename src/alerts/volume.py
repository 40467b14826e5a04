"""Daily volume cap for the phone channel.

A single tenant-wide counter per day bounds outbound tzintuk calls. Other
channels are never limited. The counter store guarantees the cap is not
exceeded; transient store failures are retried with exponential backoff
and surface as ``VolumeLimiterError`` once retries are exhausted, which
the router records as a failed send (fail closed).
"""

import logging

from src.alerts.config import AlertConfig, DispatchSettings
from src.alerts.schemas import PHONE_CHANNEL
from src.queues.backoff import ExponentialBackoff, retry_async
from src.queues.counters import CounterStore

logger = logging.getLogger(__name__)


class VolumeLimiterError(RuntimeError):
    """The counter store stayed unreachable after retries."""


class VolumeLimiter:
    """Enforces ``max_calls_per_day`` on the phone channel."""

    def __init__(
        self,
        store: CounterStore,
        dispatch_settings: DispatchSettings,
        config: AlertConfig | None = None,
        retry_attempts: int = 3,
        backoff: ExponentialBackoff | None = None,
    ) -> None:
        self._store = store
        self._settings = dispatch_settings
        self._config = config or AlertConfig()
        self._retry_attempts = retry_attempts
        self._backoff = backoff or ExponentialBackoff(base_delay=0.05, max_delay=1.0)

    def _key(self, channel: str, day_key: str) -> str:
        return f"{self._config.volume_key_prefix}:{channel}:{day_key}"

    def applies_to(self, channel: str) -> bool:
        return channel == PHONE_CHANNEL and self._settings.max_calls_per_day > 0

    async def try_consume(self, channel: str, day_key: str) -> bool:
        """Consume one unit of the day's budget for a channel.

        Args:
            channel: Channel name; only the phone channel is limited.
            day_key: Local calendar day, ``YYYY-MM-DD``.

        Returns:
            True if the send may proceed, False if the cap is reached.

        Raises:
            VolumeLimiterError: If the counter store keeps failing.
        """
        if not self.applies_to(channel):
            return True

        cap = self._settings.max_calls_per_day
        key = self._key(channel, day_key)
        try:
            allowed = await retry_async(
                lambda: self._store.increment_if_below(key, cap),
                attempts=self._retry_attempts,
                backoff=self._backoff,
                label=f"volume counter {key}",
            )
        except Exception as e:
            raise VolumeLimiterError(f"Counter {key} unavailable: {e}") from e

        if not allowed:
            logger.info("Daily %s cap of %d reached for %s", channel, cap, day_key)
        return allowed

    async def used(self, channel: str, day_key: str) -> int:
        """Units consumed so far (read-only, for statistics)."""
        return await self._store.get(self._key(channel, day_key))
