"""Alert engine orchestrating scanning, scheduling, delivery and statistics.

The single entry point used by the HTTP hooks, the ticker and the CLI.
Matching is delegated to the pure predicate in ``matching.py``; timing to
the ``DispatchScheduler``; fan-out to the ``ChannelRouter``.

Dispatch state (digest buckets, deferred matches, the daily call counter)
lives in Redis when a client is supplied and in process memory otherwise.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import redis.asyncio as redis
import structlog

from src.alerts.buckets import (
    InMemoryBucketStore,
    InMemoryDeferredStore,
    RedisBucketStore,
    RedisDeferredStore,
)
from src.alerts.config import AlertConfig, DispatchSettings
from src.alerts.quiet_hours import to_local
from src.alerts.repository import AlertPreferenceRepository, SendRecordRepository
from src.alerts.scanner import AlertScanner, ScanResult
from src.alerts.scheduler import DispatchScheduler, TickResult
from src.alerts.schemas import PHONE_CHANNEL
from src.alerts.volume import VolumeLimiter
from src.delivery.channels import (
    EmailDigestSender,
    SiteNotificationSender,
    TzintukSender,
    WhatsAppSender,
)
from src.delivery.notifications import NotificationRepository
from src.delivery.router import ChannelRouter, NotificationConfig
from src.delivery.transports import (
    EmailConfig,
    ResendEmailTransport,
    WhatsAppConfig,
    WhatsAppTransport,
    YemotConfig,
    YemotTzintukTransport,
)
from src.ivr.session_store import CallSessionStore
from src.jobs.repository import JobRepository
from src.jobs.schemas import Job
from src.queues.backoff import ExponentialBackoff
from src.queues.counters import InMemoryCounterStore, RedisCounterStore
from src.storage.database import Database

logger = structlog.get_logger(__name__)


@dataclass
class DispatchStats:
    """Admin statistics, derived read-only from stored state."""

    sent_today: int
    sent_this_month: int
    sent_total: int
    failed_today: int
    pending_jobs: int
    pending_buckets: int
    deferred_matches: int
    calls_today: int

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class AlertEngine:
    """Orchestrator for the job-alert pipeline.

    Usage:
        engine = AlertEngine.build(database, redis_client)
        await engine.create_tables()
        await engine.on_job_created(job)
        await engine.tick()
    """

    def __init__(
        self,
        *,
        alert_repo: AlertPreferenceRepository,
        job_repo: JobRepository,
        send_records: SendRecordRepository,
        scanner: AlertScanner,
        scheduler: DispatchScheduler,
        volume: VolumeLimiter,
        config: AlertConfig | None = None,
        dispatch_settings: DispatchSettings | None = None,
        timezone_name: str = "Asia/Jerusalem",
        table_owners: list[Any] | None = None,
    ) -> None:
        self._alert_repo = alert_repo
        self._job_repo = job_repo
        self._send_records = send_records
        self._scanner = scanner
        self._scheduler = scheduler
        self._volume = volume
        self._config = config or AlertConfig()
        self._settings = dispatch_settings or DispatchSettings()
        self._tz = timezone_name
        self._table_owners = table_owners or [alert_repo, job_repo, send_records]

    @classmethod
    def build(
        cls,
        database: Database,
        redis_client: redis.Redis | None = None,
        *,
        config: AlertConfig | None = None,
        dispatch_settings: DispatchSettings | None = None,
        notification_config: NotificationConfig | None = None,
        email_config: EmailConfig | None = None,
        whatsapp_config: WhatsAppConfig | None = None,
        yemot_config: YemotConfig | None = None,
        timezone_name: str = "Asia/Jerusalem",
    ) -> "AlertEngine":
        """Wire the full pipeline from configuration."""
        config = config or AlertConfig()
        dispatch_settings = dispatch_settings or DispatchSettings()
        notification_config = notification_config or NotificationConfig()

        alert_repo = AlertPreferenceRepository(database)
        job_repo = JobRepository(database)
        send_records = SendRecordRepository(database)
        notifications = NotificationRepository(database)
        sessions = CallSessionStore(database)

        if redis_client is not None:
            buckets = RedisBucketStore(redis_client, prefix=config.bucket_key_prefix)
            deferred = RedisDeferredStore(redis_client, key=config.deferred_key)
            counters = RedisCounterStore(
                redis_client, ttl_seconds=config.volume_key_ttl_hours * 3600,
            )
        else:
            logger.warning("No Redis client, dispatch state kept in process memory")
            buckets = InMemoryBucketStore()
            deferred = InMemoryDeferredStore()
            counters = InMemoryCounterStore()

        volume = VolumeLimiter(counters, dispatch_settings, config)

        def backoff() -> ExponentialBackoff:
            return ExponentialBackoff(
                base_delay=notification_config.retry_base_delay,
                max_delay=notification_config.retry_max_delay,
            )

        attempts = notification_config.retry_max_attempts
        senders = [
            SiteNotificationSender(notifications),
            EmailDigestSender(
                ResendEmailTransport(email_config, attempts, backoff()),
                base_url=config.site_base_url,
                timezone_name=timezone_name,
            ),
            WhatsAppSender(
                WhatsAppTransport(whatsapp_config, attempts, backoff()),
                base_url=config.site_base_url,
            ),
            TzintukSender(YemotTzintukTransport(yemot_config, attempts, backoff())),
        ]
        router = ChannelRouter(
            senders,
            send_records,
            volume,
            dispatch_settings=dispatch_settings,
            config=notification_config,
            timezone_name=timezone_name,
        )
        scheduler = DispatchScheduler(
            alert_repo,
            job_repo,
            router,
            buckets,
            deferred,
            config=config,
            dispatch_settings=dispatch_settings,
            timezone_name=timezone_name,
        )
        scanner = AlertScanner(alert_repo, job_repo, scheduler, config=config)

        return cls(
            alert_repo=alert_repo,
            job_repo=job_repo,
            send_records=send_records,
            scanner=scanner,
            scheduler=scheduler,
            volume=volume,
            config=config,
            dispatch_settings=dispatch_settings,
            timezone_name=timezone_name,
            table_owners=[job_repo, alert_repo, send_records, notifications, sessions],
        )

    @property
    def scheduler(self) -> DispatchScheduler:
        return self._scheduler

    async def create_tables(self) -> None:
        """Create every table the pipeline owns (idempotent)."""
        for owner in self._table_owners:
            await owner.create_table()

    # ── Hooks ─────────────────────────────────────────────

    async def on_job_created(self, job: Job, now: datetime | None = None) -> ScanResult:
        """Job creation hook: store the job and scan it immediately."""
        await self._job_repo.create(job)
        return await self._scanner.scan_job(job, now=now)

    async def on_job_deleted(self, job_id: str) -> bool:
        """Deleted jobs drop out of pending releases; sent records stay."""
        return await self._job_repo.delete(job_id)

    async def deactivate_alert(self, alert_id: str) -> bool:
        """Pause an alert and discard its pending matches."""
        found = await self._alert_repo.set_active(alert_id, False)
        removed = await self._scheduler.cancel_alert(alert_id)
        logger.info("Alert deactivated", alert_id=alert_id, found=found, discarded=removed)
        return found

    async def delete_alert(self, alert_id: str) -> bool:
        """Hard-delete an alert and discard its pending matches."""
        found = await self._alert_repo.delete(alert_id)
        removed = await self._scheduler.cancel_alert(alert_id)
        logger.info("Alert deleted", alert_id=alert_id, found=found, discarded=removed)
        return found

    # ── Scheduling ────────────────────────────────────────

    async def tick(self, now: datetime | None = None) -> TickResult:
        return await self._scheduler.tick(now)

    async def sweep(
        self,
        since: datetime | None = None,
        now: datetime | None = None,
    ) -> list[ScanResult]:
        """Catch-up scan of jobs posted since ``since`` (default: the lookback)."""
        return await self._scanner.sweep(since=since, now=now)

    async def force_dispatch(self, now: datetime | None = None) -> TickResult:
        """Operator "dispatch now": releases everything pending."""
        return await self._scheduler.force_dispatch(now)

    async def next_fire_time(self) -> datetime | None:
        return await self._scheduler.next_fire_time()

    async def drain(self) -> None:
        """Wait for instant releases started by the hooks or a sweep."""
        await self._scheduler.drain()

    # ── Statistics ────────────────────────────────────────

    def _start_of_local_day(self, now: datetime) -> datetime:
        local = to_local(now, self._tz)
        midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight.astimezone(timezone.utc)

    def _start_of_local_month(self, now: datetime) -> datetime:
        local = to_local(now, self._tz)
        first = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return first.astimezone(timezone.utc)

    async def stats(self, now: datetime | None = None) -> DispatchStats:
        """Admin statistics (today and this month in local calendar terms)."""
        now = now or datetime.now(timezone.utc)
        today = self._start_of_local_day(now)
        lookback = now - timedelta(hours=self._config.sweep_lookback_hours)

        pending_buckets, deferred = await self._scheduler.backlog()
        return DispatchStats(
            sent_today=await self._send_records.count_since(today),
            sent_this_month=await self._send_records.count_since(
                self._start_of_local_month(now),
            ),
            sent_total=await self._send_records.count_total(),
            failed_today=await self._send_records.count_since(today, status="failed"),
            pending_jobs=await self._job_repo.count_pending(lookback),
            pending_buckets=pending_buckets,
            deferred_matches=deferred,
            calls_today=await self._send_records.count_since(today, channel=PHONE_CHANNEL),
        )
