"""
Alert ticker - the periodic driver of the dispatch scheduler.

Runs as a standalone service that:
1. Calls ``AlertEngine.tick`` to release due deferred matches and flush
   ready digest buckets
2. Every ``sweep_interval_minutes`` runs a catch-up sweep so jobs whose
   creation hook failed are still matched
3. Sleeps until the next fire time, capped at the configured check
   frequency

A failing tick or sweep is logged and the loop continues; the next tick
retries whatever is still pending.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import redis.asyncio as redis
import structlog

from src.alerts.config import AlertConfig, DispatchSettings
from src.alerts.service import AlertEngine
from src.storage.database import Database

logger = structlog.get_logger(__name__)

_MIN_SLEEP_SECONDS = 1.0


class AlertTicker:
    """
    Worker that ticks the alert engine until stopped.

    Usage:
        ticker = AlertTicker(engine, database=database, redis_client=client)
        await ticker.start()  # Runs until stopped
    """

    def __init__(
        self,
        engine: AlertEngine,
        config: AlertConfig | None = None,
        dispatch_settings: DispatchSettings | None = None,
        database: Database | None = None,
        redis_client: redis.Redis | None = None,
    ):
        """
        Initialize the ticker.

        Args:
            engine: Wired alert engine
            config: Alert configuration (sweep interval)
            dispatch_settings: Dispatch settings (check frequency)
            database: Database closed on shutdown, if the ticker owns it
            redis_client: Redis client closed on shutdown, if the ticker owns it
        """
        self._engine = engine
        self._config = config or AlertConfig()
        self._settings = dispatch_settings or DispatchSettings()
        self._database = database
        self._redis = redis_client
        self._running = False
        self._last_sweep: datetime | None = None

        logger.info(
            "AlertTicker initialized",
            check_frequency_minutes=self._settings.check_frequency_minutes,
            sweep_interval_minutes=self._config.sweep_interval_minutes,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Enter the tick loop until ``stop()`` is called."""
        self._running = True
        logger.info("Starting alert ticker")

        try:
            while self._running:
                await self.run_once()
                if not self._running:
                    break
                await asyncio.sleep(await self.sleep_seconds())
        except asyncio.CancelledError:
            logger.info("Alert ticker cancelled")
        except Exception as e:
            logger.error("Alert ticker error", error=str(e))
            raise
        finally:
            await self._cleanup()

    async def stop(self) -> None:
        """Stop the ticker after the current iteration."""
        logger.info("Stopping alert ticker")
        self._running = False

    async def run_once(self, now: datetime | None = None) -> None:
        """One iteration: a tick, plus a sweep when one is due."""
        now = now or datetime.now(timezone.utc)

        try:
            result = await self._engine.tick(now)
            if result.releases or result.errors:
                logger.info("Tick completed", **result.to_dict())
        except Exception as e:
            logger.error("Tick failed", error=str(e))

        if self._sweep_due(now):
            self._last_sweep = now
            try:
                results = await self._engine.sweep(now=now)
                logger.info(
                    "Sweep completed",
                    jobs=len(results),
                    matched=sum(r.matched for r in results),
                    errors=sum(r.errors for r in results),
                )
            except Exception as e:
                logger.error("Sweep failed", error=str(e))

    def _sweep_due(self, now: datetime) -> bool:
        if self._last_sweep is None:
            return True
        interval = timedelta(minutes=self._config.sweep_interval_minutes)
        return now - self._last_sweep >= interval

    async def sleep_seconds(self, now: datetime | None = None) -> float:
        """Seconds until the next fire time, capped at the check frequency."""
        now = now or datetime.now(timezone.utc)
        period = self._settings.check_frequency_minutes * 60.0

        try:
            next_fire = await self._engine.next_fire_time()
        except Exception as e:
            logger.warning("Could not read next fire time", error=str(e))
            return period

        if next_fire is None:
            return period
        until = (next_fire - now).total_seconds()
        return min(period, max(_MIN_SLEEP_SECONDS, until))

    async def _cleanup(self) -> None:
        """Finish background releases, then close owned connections."""
        await self._engine.drain()
        if self._redis is not None:
            await self._redis.close()
        if self._database is not None:
            await self._database.close()
        logger.info("Alert ticker cleaned up")
