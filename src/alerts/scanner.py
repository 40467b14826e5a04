"""
Alert scanner - evaluates a new job against every active alert.

For each candidate alert (in parallel, bounded by ``scan_concurrency``):
1. Skip alerts that are paused, have no enabled channel, belong to the
   job's poster, or whose cursor already covers the job
2. Evaluate the match predicate
3. On match, hand a MatchEvent to the scheduler and, once accepted,
   advance the alert's cursor to the job's posting time
4. Alerts that evaluated cleanly without matching have their cursors
   advanced in one batch

Failures are isolated per alert: a malformed alert or a scheduler error
is logged and counted, and never stops the remaining alerts. A failed
alert keeps its cursor, so the next sweep retries it.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import structlog

from src.alerts.config import AlertConfig
from src.alerts.matching import MalformedAlertError, matches
from src.alerts.repository import AlertPreferenceRepository
from src.alerts.scheduler import DispatchScheduler
from src.alerts.schemas import AlertPreference, MatchEvent
from src.jobs.repository import JobRepository
from src.jobs.schemas import Job
from src.observability.metrics import get_metrics
from src.observability.tracing import get_tracer, traced

logger = structlog.get_logger(__name__)

_SKIPPED = "skipped"
_MATCHED = "matched"
_NO_MATCH = "no_match"
_ERROR = "error"


@dataclass
class ScanResult:
    """Outcome of scanning one job."""

    job_id: str
    evaluated: int = 0
    matched: int = 0
    skipped: int = 0
    errors: int = 0
    matched_alert_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "evaluated": self.evaluated,
            "matched": self.matched,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class AlertScanner:
    """Matches jobs against active alerts and feeds the scheduler."""

    def __init__(
        self,
        alert_repo: AlertPreferenceRepository,
        job_repo: JobRepository,
        scheduler: DispatchScheduler,
        config: AlertConfig | None = None,
    ) -> None:
        self._alert_repo = alert_repo
        self._job_repo = job_repo
        self._scheduler = scheduler
        self._config = config or AlertConfig()
        self._tracer = get_tracer("alerts.scanner")

    async def scan_job(
        self,
        job: Job,
        alerts: list[AlertPreference] | None = None,
        now: datetime | None = None,
    ) -> ScanResult:
        """Scan one job against active alerts.

        Args:
            job: The newly created job.
            alerts: Pre-loaded active alerts (loaded from storage if None).
            now: Current instant (UTC); defaults to the wall clock.

        Returns:
            Per-outcome counts.
        """
        now = now or datetime.now(timezone.utc)
        result = ScanResult(job_id=job.job_id)
        metrics = get_metrics()

        with traced(self._tracer, "scan_job", {"job_id": job.job_id}):
            if alerts is None:
                alerts = await self._alert_repo.list_active()

            semaphore = asyncio.Semaphore(self._config.scan_concurrency)

            async def evaluate(alert: AlertPreference) -> str:
                async with semaphore:
                    return await self._scan_one(job, alert, now)

            outcomes = await asyncio.gather(*(evaluate(a) for a in alerts))

            unmatched: list[str] = []
            by_frequency: dict[str, int] = {}
            for alert, outcome in zip(alerts, outcomes):
                if outcome == _SKIPPED:
                    result.skipped += 1
                    continue
                result.evaluated += 1
                if outcome == _MATCHED:
                    result.matched += 1
                    result.matched_alert_ids.append(alert.alert_id)
                    by_frequency[alert.frequency] = by_frequency.get(alert.frequency, 0) + 1
                elif outcome == _NO_MATCH:
                    unmatched.append(alert.alert_id)
                else:
                    result.errors += 1

            if unmatched:
                try:
                    await self._alert_repo.advance_many(unmatched, job.posted_at)
                except Exception as e:
                    # Cursors stay behind; the next sweep re-evaluates them
                    logger.error(
                        "Cursor batch update failed",
                        job_id=job.job_id,
                        alerts=len(unmatched),
                        error=str(e),
                    )

        metrics.record_scan(by_frequency)
        logger.info("Job scanned", **result.to_dict())
        return result

    async def _scan_one(self, job: Job, alert: AlertPreference, now: datetime) -> str:
        if not alert.is_active or not alert.is_deliverable:
            return _SKIPPED
        if alert.owner_id == job.poster_id:
            return _SKIPPED
        if alert.covers(job):
            return _SKIPPED

        try:
            if not matches(job, alert):
                return _NO_MATCH
        except MalformedAlertError as e:
            get_metrics().record_scan_error("malformed_alert")
            logger.warning(
                "Skipping malformed alert",
                alert_id=alert.alert_id,
                job_id=job.job_id,
                error=str(e),
            )
            return _ERROR

        event = MatchEvent(
            alert_id=alert.alert_id,
            job_id=job.job_id,
            job_posted_at=job.posted_at,
            matched_at=now,
        )
        try:
            await self._scheduler.enqueue(alert, job, event, now=now)
            await self._alert_repo.advance_last_checked(alert.alert_id, job.posted_at)
        except Exception as e:
            get_metrics().record_scan_error("dispatch")
            logger.error(
                "Match hand-off failed",
                alert_id=alert.alert_id,
                job_id=job.job_id,
                error=str(e),
            )
            return _ERROR
        return _MATCHED

    async def sweep(
        self,
        since: datetime | None = None,
        now: datetime | None = None,
    ) -> list[ScanResult]:
        """Catch-up pass over recently posted jobs, oldest first.

        Covers alerts created (or fixed) after a job was posted; alerts
        whose cursor already covers a job skip it.

        Args:
            since: Lower bound on posting time (default: the configured
                lookback window).
            now: Current instant (UTC).

        Returns:
            One ScanResult per job examined.
        """
        now = now or datetime.now(timezone.utc)
        since = since or now - timedelta(hours=self._config.sweep_lookback_hours)

        jobs = await self._job_repo.get_posted_since(since)
        if not jobs:
            return []

        alerts = await self._alert_repo.list_active()
        results = []
        for job in jobs:
            results.append(await self.scan_job(job, alerts=alerts, now=now))

        logger.info(
            "Sweep complete",
            jobs=len(jobs),
            matched=sum(r.matched for r in results),
            errors=sum(r.errors for r in results),
        )
        return results
