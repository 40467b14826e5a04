"""Channel router fanning a released match out to every enabled channel.

Channels run concurrently and are joined independently: one slow or
failing channel never blocks or aborts another. Per channel the router:

1. Claims each (alert, job, channel) triple; jobs already sent or claimed
   by a concurrent dispatch are dropped, and a channel with nothing left is
   a no-op. Claims are released again unless the outcome is ``sent``
2. For the phone channel, applies the global quiet hours
   (``skipped_quiet_hours``) and the daily volume cap
   (``skipped_volume_cap``), without calling the transport
3. Calls the sender (wrapped in a CircuitBreaker)
4. Persists one ChannelSendRecord per job with the outcome

Retry is owned by the senders' transports, not by the router.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from datetime import time as dt_time

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.alerts.config import DispatchSettings
from src.alerts.quiet_hours import day_key, in_window, to_local
from src.alerts.repository import SendRecordRepository
from src.alerts.schemas import (
    EMAIL_CHANNEL,
    PHONE_CHANNEL,
    ChannelSendRecord,
    MatchEvent,
    Release,
)
from src.alerts.volume import VolumeLimiter, VolumeLimiterError
from src.delivery.channels import ChannelSender, CircuitBreaker, DeliveryPayload
from src.jobs.schemas import Job
from src.observability.metrics import get_metrics
from src.observability.tracing import get_tracer, traced

logger = logging.getLogger(__name__)


class NotificationConfig(BaseSettings):
    """Configuration for channel delivery."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum transport attempts per delivery",
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Initial backoff delay in seconds",
    )
    retry_max_delay: float = Field(
        default=30.0,
        ge=0.0,
        description="Backoff delay ceiling in seconds",
    )
    circuit_breaker_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before circuit opens",
    )
    circuit_breaker_recovery_seconds: float = Field(
        default=60.0,
        ge=5.0,
        description="Seconds before circuit breaker allows a recovery attempt",
    )


class ChannelRouter:
    """Delivers releases over the alert's enabled channels.

    Wraps each sender in a CircuitBreaker, keyed by channel name.
    """

    def __init__(
        self,
        senders: list[ChannelSender],
        send_records: SendRecordRepository,
        volume: VolumeLimiter,
        dispatch_settings: DispatchSettings | None = None,
        config: NotificationConfig | None = None,
        timezone_name: str = "Asia/Jerusalem",
    ) -> None:
        self._config = config or NotificationConfig()
        self._settings = dispatch_settings or DispatchSettings()
        self._records = send_records
        self._volume = volume
        self._tz = timezone_name
        self._tracer = get_tracer("delivery.router")

        self._senders: dict[str, CircuitBreaker] = {}
        for sender in senders:
            if not isinstance(sender, CircuitBreaker):
                sender = CircuitBreaker(
                    sender=sender,
                    failure_threshold=self._config.circuit_breaker_threshold,
                    recovery_timeout=self._config.circuit_breaker_recovery_seconds,
                )
            self._senders[sender.name] = sender

    @property
    def senders(self) -> dict[str, CircuitBreaker]:
        """Access wrapped senders (for inspection/testing)."""
        return self._senders

    def channels_for(self, release: Release) -> list[str]:
        """Enabled channels of the release's alert, after restrictions."""
        channels = [
            ch for ch in release.alert.delivery.enabled()
            if release.channels is None or ch in release.channels
        ]
        if PHONE_CHANNEL in channels and not self._settings.is_phone_service_active:
            channels.remove(PHONE_CHANNEL)
        if EMAIL_CHANNEL in channels and not self._settings.is_email_service_active:
            channels.remove(EMAIL_CHANNEL)
        return channels

    async def dispatch(
        self,
        release: Release,
        now: datetime | None = None,
    ) -> dict[str, str]:
        """Fan a release out to its channels.

        Args:
            release: Alert with the events and jobs to deliver.
            now: Current instant (UTC).

        Returns:
            Status per attempted channel. Channels with nothing left to
            send after dedup are omitted.
        """
        now = now or datetime.now(timezone.utc)
        channels = self.channels_for(release)
        if not channels:
            return {}

        results = await asyncio.gather(
            *(self._dispatch_channel(ch, release, now) for ch in channels),
            return_exceptions=True,
        )

        statuses: dict[str, str] = {}
        for channel, result in zip(channels, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Channel %s crashed for alert %s: %s",
                    channel, release.alert.alert_id, result,
                )
                statuses[channel] = "failed"
            elif result is not None:
                statuses[channel] = result

        self._log_outcome(release, statuses)
        return statuses

    async def _dispatch_channel(
        self,
        channel: str,
        release: Release,
        now: datetime,
    ) -> str | None:
        alert = release.alert
        with traced(
            self._tracer,
            "dispatch_channel",
            {"channel": channel, "alert_id": alert.alert_id, "jobs": len(release.jobs)},
        ):
            start = time.monotonic()
            try:
                claimed = await self._records.claim(
                    alert.alert_id, channel, [j.job_id for j in release.jobs],
                )
            except Exception as e:
                return await self._finish(
                    channel, release.events, "failed", f"dedup claim failed: {e}",
                )

            pending = [
                (event, job)
                for event, job in zip(release.events, release.jobs)
                if job.job_id in claimed
            ]
            if not pending:
                logger.debug(
                    "Channel %s: nothing new for alert %s", channel, alert.alert_id,
                )
                return None
            events = [event for event, _ in pending]
            jobs: list[Job] = [job for _, job in pending]

            status = None
            try:
                status = await self._deliver(channel, release, events, jobs, now, start)
                return status
            finally:
                if status != "sent":
                    await self._release_claims(alert.alert_id, channel, jobs)

    async def _deliver(
        self,
        channel: str,
        release: Release,
        events: list[MatchEvent],
        jobs: list[Job],
        now: datetime,
        start: float,
    ) -> str:
        alert = release.alert
        sender = self._senders.get(channel)
        if sender is None:
            return await self._finish(channel, events, "failed", "no sender configured")

        recipient = alert.contact_for(channel)
        if not recipient:
            return await self._finish(channel, events, "failed", "no contact target")

        if channel == PHONE_CHANNEL:
            gated = await self._gate_phone(events, release.forced, now)
            if gated is not None:
                return gated

        try:
            ok = await sender.send(DeliveryPayload(alert=alert, jobs=jobs, recipient=recipient))
            status, error = ("sent", None) if ok else ("failed", "not delivered")
        except Exception as e:
            logger.warning(
                "Channel %s failed for alert %s: %s", channel, alert.alert_id, e,
            )
            status, error = "failed", str(e) or type(e).__name__

        return await self._finish(
            channel, events, status, error, latency=time.monotonic() - start,
        )

    async def _release_claims(self, alert_id: str, channel: str, jobs: list[Job]) -> None:
        """Free claims after a non-sent outcome so retries and re-defers can send."""
        try:
            await self._records.release_claims(alert_id, channel, [j.job_id for j in jobs])
        except Exception as e:
            logger.error(
                "Failed to release %s claims for alert %s: %s", channel, alert_id, e,
            )

    async def _gate_phone(
        self,
        events: list[MatchEvent],
        forced: bool,
        now: datetime,
    ) -> str | None:
        """Global quiet hours and daily cap. Returns a status if gated."""
        local = to_local(now, self._tz)
        quiet = in_window(
            local,
            dt_time(self._settings.quiet_hours_start),
            dt_time(self._settings.quiet_hours_end),
        )
        if quiet and not forced:
            return await self._finish(PHONE_CHANNEL, events, "skipped_quiet_hours")

        try:
            allowed = await self._volume.try_consume(PHONE_CHANNEL, day_key(now, self._tz))
        except VolumeLimiterError as e:
            return await self._finish(PHONE_CHANNEL, events, "failed", str(e))
        if not allowed:
            return await self._finish(PHONE_CHANNEL, events, "skipped_volume_cap")
        return None

    async def _finish(
        self,
        channel: str,
        events: list[MatchEvent],
        status: str,
        error: str | None = None,
        latency: float | None = None,
    ) -> str:
        records = [
            ChannelSendRecord(
                channel=channel,
                alert_id=event.alert_id,
                job_id=event.job_id,
                status=status,
                error=error,
            )
            for event in events
        ]
        await self._records.record_batch(records)
        get_metrics().record_send(channel, status, latency)
        return status

    def _log_outcome(self, release: Release, statuses: dict[str, str]) -> None:
        ok = [ch for ch, s in statuses.items() if s == "sent"]
        failed = [ch for ch, s in statuses.items() if s == "failed"]
        alert_id = release.alert.alert_id

        if failed and not ok:
            logger.error("Alert %s failed ALL channels: %s", alert_id, failed)
        elif failed:
            logger.warning(
                "Alert %s partial delivery: ok=%s failed=%s", alert_id, ok, failed,
            )
        else:
            logger.debug("Alert %s delivery: %s", alert_id, statuses)
