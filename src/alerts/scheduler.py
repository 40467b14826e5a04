"""Dispatch scheduler deciding when matches are released.

Instant alerts are released as soon as their quiet-hours gate allows
(at the next tick in ``batch`` send mode); gated matches are deferred to
the instant the gate reopens. An immediate release runs as a tracked
background task, so intake returns before any channel is contacted;
``drain()`` waits for those tasks.

Daily and weekly alerts accumulate into a digest bucket per owner and
window, flushed when the window's fire time passes. A flush groups
entries by alert, discards those of paused or deleted alerts, and
releases one digest per alert, oldest job first.

Bucket lifecycle: accumulating (entries added) -> ready (fire time
passed) -> flushed (read-and-cleared atomically). A ready bucket whose
alert is gated is put back and stays ready.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from src.alerts.buckets import (
    BucketEntry,
    BucketKey,
    BucketStore,
    DeferredMatch,
    DeferredStore,
)
from src.alerts.config import AlertConfig, DispatchSettings
from src.alerts.quiet_hours import (
    is_allowed_now,
    next_allowed_time,
    next_hour_boundary,
    to_local,
    weekday_index,
)
from src.alerts.repository import AlertPreferenceRepository
from src.alerts.schemas import PHONE_CHANNEL, AlertPreference, MatchEvent, Release
from src.jobs.repository import JobRepository
from src.jobs.schemas import Job
from src.observability.metrics import get_metrics

if TYPE_CHECKING:
    from src.delivery.router import ChannelRouter

logger = logging.getLogger(__name__)

# Recheck interval for alerts whose gate never opens (no valid day)
_GATE_RECHECK = timedelta(hours=24)
# Retry delay after a release failed unexpectedly
_FAILURE_RETRY = timedelta(minutes=1)
_FORCE_HORIZON = timedelta(days=3650)

HoldFn = Callable[[AlertPreference, list[MatchEvent], datetime], Awaitable[None]]


@dataclass
class TickResult:
    """Outcome counts of one tick or forced dispatch."""

    releases: int = 0
    deferred: int = 0
    discarded: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "releases": self.releases,
            "deferred": self.deferred,
            "discarded": self.discarded,
            "errors": self.errors,
        }


class DispatchScheduler:
    """Holds matches until they may be released and hands them to the router."""

    def __init__(
        self,
        alert_repo: AlertPreferenceRepository,
        job_repo: JobRepository,
        router: "ChannelRouter",
        buckets: BucketStore,
        deferred: DeferredStore,
        config: AlertConfig | None = None,
        dispatch_settings: DispatchSettings | None = None,
        timezone_name: str = "Asia/Jerusalem",
    ) -> None:
        self._alert_repo = alert_repo
        self._job_repo = job_repo
        self._router = router
        self._buckets = buckets
        self._deferred = deferred
        self._config = config or AlertConfig()
        self._settings = dispatch_settings or DispatchSettings()
        self._tz = timezone_name
        self._inflight: set[asyncio.Task] = set()

    # ── Intake ────────────────────────────────────────────

    async def enqueue(
        self,
        alert: AlertPreference,
        job: Job,
        event: MatchEvent,
        now: datetime | None = None,
    ) -> None:
        """Accept a match. Returning without an exception means accepted.

        An instant match that may go out now is handed to a background
        task; delivery outcomes never reach the caller.

        Args:
            alert: The matched alert.
            job: The matched job.
            event: The match event.
            now: Current instant (UTC); defaults to the wall clock.
        """
        now = now or datetime.now(timezone.utc)

        if alert.frequency != "instant":
            key, fire_at = self.bucket_for(alert, now)
            await self._buckets.add(key, fire_at, BucketEntry(event=event))
            logger.debug(
                "Match %s/%s added to %s bucket firing at %s",
                event.alert_id, event.job_id, alert.frequency, fire_at.isoformat(),
            )
            return

        if self._settings.send_mode == "batch":
            await self._deferred.add(DeferredMatch(event=event, not_before=now))
            return

        local = to_local(now, self._tz)
        if not is_allowed_now(alert, local):
            await self._defer(alert, [event], local)
            return

        self._spawn(self._release_instant(
            Release(alert=alert, events=[event], jobs=[job]), now,
        ))

    def bucket_for(self, alert: AlertPreference, now: datetime) -> tuple[BucketKey, datetime]:
        """Digest bucket key and fire time (UTC) for a match arriving at ``now``.

        Daily digests fire at the next configured local digest time; weekly
        digests at that time on the configured weekday.
        """
        local = to_local(now, self._tz)
        fire_local = local.replace(
            hour=self._config.digest_hour,
            minute=self._config.digest_minute,
            second=0,
            microsecond=0,
        )
        if alert.frequency == "weekly":
            days_ahead = (self._config.weekly_digest_weekday - weekday_index(local)) % 7
            fire_local += timedelta(days=days_ahead)
            if fire_local <= local:
                fire_local += timedelta(days=7)
        elif fire_local <= local:
            fire_local += timedelta(days=1)

        key = BucketKey(
            owner_id=alert.owner_id,
            frequency=alert.frequency,
            window_key=fire_local.date().isoformat(),
        )
        return key, fire_local.astimezone(timezone.utc)

    # ── Ticks ─────────────────────────────────────────────

    async def tick(self, now: datetime | None = None) -> TickResult:
        """Release due deferred matches and flush ready buckets."""
        now = now or datetime.now(timezone.utc)
        result = TickResult()

        due = await self._deferred.take_due(now)
        if due:
            await self._release_deferred(due, now, result, forced=False)

        for key in await self._buckets.due(now):
            entries = await self._buckets.take(key)
            await self._flush_bucket(key, entries, now, result, forced=False)

        await self._update_backlog()
        if result.releases or result.errors:
            logger.info("Dispatch tick: %s", result.to_dict())
        return result

    async def force_dispatch(self, now: datetime | None = None) -> TickResult:
        """Release everything pending now, ignoring fire times and quiet hours.

        Volume limits and dedup still apply in the router.
        """
        now = now or datetime.now(timezone.utc)
        result = TickResult()

        pending = await self._deferred.take_due(now + _FORCE_HORIZON)
        if pending:
            await self._release_deferred(pending, now, result, forced=True)

        for key in await self._buckets.all_keys():
            entries = await self._buckets.take(key)
            await self._flush_bucket(key, entries, now, result, forced=True)

        await self._update_backlog()
        logger.info("Forced dispatch: %s", result.to_dict())
        return result

    # ── Cancellation and introspection ────────────────────

    async def cancel_alert(self, alert_id: str) -> int:
        """Discard every pending bucket entry and deferred match of an alert."""
        removed = await self._buckets.remove_alert(alert_id)
        removed += await self._deferred.remove_alert(alert_id)
        if removed:
            logger.info("Cancelled %d pending matches of alert %s", removed, alert_id)
        await self._update_backlog()
        return removed

    async def next_fire_time(self) -> datetime | None:
        """Earliest instant at which a tick has work to do."""
        times = [
            t for t in (
                await self._buckets.next_fire_at(),
                await self._deferred.next_at(),
            )
            if t is not None
        ]
        return min(times, default=None)

    async def backlog(self) -> tuple[int, int]:
        """(pending buckets, deferred matches)."""
        return await self._buckets.pending_count(), await self._deferred.count()

    @property
    def in_flight(self) -> int:
        """Instant releases still running in the background."""
        return len(self._inflight)

    async def drain(self) -> None:
        """Wait until every background instant release has finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ── Internals ─────────────────────────────────────────

    async def _defer(
        self,
        alert: AlertPreference,
        events: list[MatchEvent],
        now_local: datetime,
        channels: frozenset[str] | None = None,
    ) -> None:
        opens = next_allowed_time(alert, now_local)
        if opens is None:
            logger.warning(
                "Alert %s has no open delivery day, rechecking in %s",
                alert.alert_id, _GATE_RECHECK,
            )
            opens = now_local + _GATE_RECHECK
        not_before = opens.astimezone(timezone.utc)
        for event in events:
            await self._deferred.add(
                DeferredMatch(event=event, not_before=not_before, channels=channels)
            )

    async def _release_deferred(
        self,
        items: list[DeferredMatch],
        now: datetime,
        result: TickResult,
        *,
        forced: bool,
    ) -> None:
        groups: dict[tuple[str, frozenset[str] | None], list[MatchEvent]] = {}
        for item in items:
            groups.setdefault((item.alert_id, item.channels), []).append(item.event)

        try:
            alerts = await self._alert_repo.get_many(list({a for a, _ in groups}))
        except Exception as e:
            logger.error("Could not load alerts for deferred matches: %s", e)
            result.errors += 1
            for (_, channels), events in groups.items():
                await self._requeue(events, now, channels)
            return

        for (alert_id, channels), events in groups.items():

            async def hold(alert, held, moment, channels=channels):
                await self._defer(alert, held, to_local(moment, self._tz), channels)

            await self._release_group(
                alert_id, alerts.get(alert_id), events, now, result,
                forced=forced, channels=channels, hold=hold,
            )

    async def _flush_bucket(
        self,
        key: BucketKey,
        entries: list[BucketEntry],
        now: datetime,
        result: TickResult,
        *,
        forced: bool,
    ) -> None:
        if not entries:
            return

        groups: dict[str, list[MatchEvent]] = {}
        for entry in entries:
            groups.setdefault(entry.alert_id, []).append(entry.event)

        try:
            alerts = await self._alert_repo.get_many(list(groups))
        except Exception as e:
            logger.error("Could not load alerts for bucket %s: %s", key.encode(), e)
            result.errors += 1
            for events in groups.values():
                await self._requeue(events, now, None)
            return

        async def hold(alert, held, moment):
            # Gated: put back as ready so the next tick re-checks the gate
            for event in held:
                await self._buckets.add(key, moment, BucketEntry(event=event))

        for alert_id, events in groups.items():
            await self._release_group(
                alert_id, alerts.get(alert_id), events, now, result,
                forced=forced, channels=None, hold=hold,
            )

    async def _release_group(
        self,
        alert_id: str,
        alert: AlertPreference | None,
        events: list[MatchEvent],
        now: datetime,
        result: TickResult,
        *,
        forced: bool,
        channels: frozenset[str] | None,
        hold: HoldFn,
    ) -> None:
        """Release one alert's events; failures stay within this group."""
        if alert is None or not alert.is_active:
            result.discarded += len(events)
            logger.info(
                "Discarding %d pending matches of inactive or deleted alert %s",
                len(events), alert_id,
            )
            return

        try:
            if not forced and not is_allowed_now(alert, to_local(now, self._tz)):
                await hold(alert, events, now)
                result.deferred += len(events)
                return

            jobs = await self._job_repo.get_many(list({e.job_id for e in events}))
            release = _build_release(alert, events, jobs, channels, forced)
            if release is None:
                result.discarded += len(events)
                return

            await self._release(release, now)
            result.releases += 1
        except Exception as e:
            result.errors += 1
            logger.error("Release failed for alert %s: %s", alert_id, e)
            await self._requeue(events, now, channels)

    async def _requeue(
        self,
        events: list[MatchEvent],
        now: datetime,
        channels: frozenset[str] | None,
    ) -> None:
        """Retry events at a later tick; dedup makes a repeated release safe."""
        for event in events:
            try:
                await self._deferred.add(DeferredMatch(
                    event=event, not_before=now + _FAILURE_RETRY, channels=channels,
                ))
            except Exception as e:
                logger.error(
                    "Could not requeue match %s/%s: %s",
                    event.alert_id, event.job_id, e,
                )

    def _spawn(self, coro: Coroutine[None, None, None]) -> None:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _release_instant(self, release: Release, now: datetime) -> None:
        try:
            await self._release(release, now)
        except Exception as e:
            logger.error(
                "Instant release failed for alert %s, retrying at next tick: %s",
                release.alert.alert_id, e,
            )
            await self._requeue(release.events, now, None)

    async def _release(self, release: Release, now: datetime) -> dict[str, str]:
        statuses = await self._router.dispatch(release, now=now)

        # Phone held back by global quiet hours: re-defer that channel only
        if statuses.get(PHONE_CHANNEL) == "skipped_quiet_hours":
            opens = next_hour_boundary(
                to_local(now, self._tz), self._settings.quiet_hours_end,
            )
            for event in release.events:
                await self._deferred.add(DeferredMatch(
                    event=event,
                    not_before=opens.astimezone(timezone.utc),
                    channels=frozenset({PHONE_CHANNEL}),
                ))
        return statuses

    async def _update_backlog(self) -> None:
        try:
            pending_buckets, deferred = await self.backlog()
            get_metrics().set_backlog(pending_buckets, deferred)
        except Exception as e:
            logger.debug("Backlog gauge update failed: %s", e)


def _build_release(
    alert: AlertPreference,
    events: list[MatchEvent],
    jobs: list[Job],
    channels: frozenset[str] | None,
    forced: bool,
) -> Release | None:
    """Align events with the jobs that still exist, oldest job first."""
    by_job: dict[str, MatchEvent] = {}
    for event in events:
        by_job.setdefault(event.job_id, event)

    present = sorted(
        (job for job in jobs if job.job_id in by_job),
        key=lambda job: job.posted_at,
    )
    if not present:
        return None

    return Release(
        alert=alert,
        events=[by_job[job.job_id] for job in present],
        jobs=present,
        channels=channels,
        forced=forced,
    )
