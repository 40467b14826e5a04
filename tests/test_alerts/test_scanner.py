"""Tests for the alert scanner."""

import asyncio
from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.alerts.buckets import InMemoryBucketStore, InMemoryDeferredStore
from src.alerts.config import AlertConfig
from src.alerts.scanner import AlertScanner
from src.alerts.scheduler import DispatchScheduler
from src.alerts.schemas import DeliveryMethods
from src.delivery.router import ChannelRouter


@pytest.fixture
def alert_repo():
    repo = AsyncMock()
    repo.advance_last_checked.return_value = True
    return repo


@pytest.fixture
def job_repo():
    return AsyncMock()


@pytest.fixture
def scheduler():
    return AsyncMock()


@pytest.fixture
def scanner(alert_repo, job_repo, scheduler):
    return AlertScanner(alert_repo, job_repo, scheduler, config=AlertConfig(scan_concurrency=2))


class TestScanJob:
    @pytest.mark.asyncio
    async def test_match_is_enqueued_and_cursor_advanced(
        self, scanner, scheduler, alert_repo, sample_job, sample_alert, posted_at,
    ):
        result = await scanner.scan_job(sample_job, alerts=[sample_alert], now=posted_at)

        assert result.matched == 1
        assert result.matched_alert_ids == ["alert_001"]
        scheduler.enqueue.assert_called_once()
        event = scheduler.enqueue.call_args[0][2]
        assert event.alert_id == "alert_001"
        assert event.job_id == "job_001"
        assert event.job_posted_at == posted_at
        alert_repo.advance_last_checked.assert_called_once_with("alert_001", posted_at)

    @pytest.mark.asyncio
    async def test_loads_active_alerts_when_not_given(
        self, scanner, alert_repo, sample_job, sample_alert,
    ):
        alert_repo.list_active.return_value = [sample_alert]
        result = await scanner.scan_job(sample_job)
        alert_repo.list_active.assert_called_once()
        assert result.matched == 1

    @pytest.mark.asyncio
    async def test_non_matches_advanced_in_one_batch(
        self, scanner, scheduler, alert_repo, sample_job, sample_alert, posted_at,
    ):
        elsewhere = [
            replace(sample_alert, alert_id=f"far_{i}", location="אילת") for i in range(3)
        ]
        result = await scanner.scan_job(sample_job, alerts=elsewhere, now=posted_at)

        assert result.evaluated == 3
        assert result.matched == 0
        scheduler.enqueue.assert_not_called()
        alert_repo.advance_many.assert_called_once()
        ids, cursor = alert_repo.advance_many.call_args[0]
        assert sorted(ids) == ["far_0", "far_1", "far_2"]
        assert cursor == posted_at

    @pytest.mark.asyncio
    async def test_skips(self, scanner, scheduler, sample_job, sample_alert, posted_at):
        alerts = [
            replace(sample_alert, alert_id="paused", is_active=False),
            replace(sample_alert, alert_id="own", owner_id="poster_1"),
            replace(sample_alert, alert_id="mute", delivery=DeliveryMethods(site=False)),
            replace(sample_alert, alert_id="seen", last_checked_at=posted_at),
        ]
        result = await scanner.scan_job(sample_job, alerts=alerts, now=posted_at)

        assert result.skipped == 4
        assert result.evaluated == 0
        scheduler.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_rescan_is_idempotent(
        self, scanner, scheduler, sample_job, sample_alert, posted_at,
    ):
        await scanner.scan_job(sample_job, alerts=[sample_alert], now=posted_at)
        # The cursor advanced to the job's posting time
        advanced = replace(sample_alert, last_checked_at=posted_at)
        result = await scanner.scan_job(sample_job, alerts=[advanced], now=posted_at)

        assert result.matched == 0
        assert scheduler.enqueue.call_count == 1

    @pytest.mark.asyncio
    async def test_older_cursor_does_not_cover(
        self, scanner, scheduler, sample_job, sample_alert, posted_at,
    ):
        stale = replace(sample_alert, last_checked_at=posted_at - timedelta(hours=1))
        result = await scanner.scan_job(sample_job, alerts=[stale], now=posted_at)
        assert result.matched == 1


# ── Failure isolation ───────────────────────────────────


class TestIsolation:
    @pytest.mark.asyncio
    async def test_malformed_alert_does_not_stop_others(
        self, scanner, scheduler, alert_repo, sample_job, sample_alert, posted_at,
    ):
        broken = replace(sample_alert, alert_id="broken", min_hourly_rate="a lot")
        result = await scanner.scan_job(sample_job, alerts=[broken, sample_alert], now=posted_at)

        assert result.errors == 1
        assert result.matched == 1
        assert result.matched_alert_ids == ["alert_001"]
        alert_repo.advance_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_scheduler_failure_keeps_cursor(
        self, scanner, scheduler, alert_repo, sample_job, sample_alert, posted_at,
    ):
        other = replace(sample_alert, alert_id="alert_002")

        async def enqueue(alert, job, event, now=None):
            if alert.alert_id == "alert_001":
                raise ConnectionError("redis down")

        scheduler.enqueue.side_effect = enqueue
        result = await scanner.scan_job(sample_job, alerts=[sample_alert, other], now=posted_at)

        assert result.errors == 1
        assert result.matched == 1
        alert_repo.advance_last_checked.assert_called_once_with("alert_002", posted_at)

    @pytest.mark.asyncio
    async def test_cursor_batch_failure_is_logged(
        self, scanner, alert_repo, sample_job, sample_alert, posted_at,
    ):
        alert_repo.advance_many.side_effect = RuntimeError("db down")
        far = replace(sample_alert, location="אילת")
        result = await scanner.scan_job(sample_job, alerts=[far], now=posted_at)
        assert result.evaluated == 1
        assert result.errors == 0


# ── Sweep ───────────────────────────────────────────────


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_scans_recent_jobs_oldest_first(
        self, scanner, scheduler, job_repo, alert_repo, sample_job, sample_alert, posted_at,
    ):
        later = replace(sample_job, job_id="job_002", posted_at=posted_at + timedelta(minutes=5))
        job_repo.get_posted_since.return_value = [sample_job, later]
        alert_repo.list_active.return_value = [sample_alert]

        now = posted_at + timedelta(hours=1)
        results = await scanner.sweep(now=now)

        job_repo.get_posted_since.assert_called_once_with(now - timedelta(hours=24))
        assert [r.job_id for r in results] == ["job_001", "job_002"]
        alert_repo.list_active.assert_called_once()
        assert scheduler.enqueue.call_count == 2

    @pytest.mark.asyncio
    async def test_sweep_with_explicit_since(self, scanner, job_repo, alert_repo, posted_at):
        job_repo.get_posted_since.return_value = []
        assert await scanner.sweep(since=posted_at, now=posted_at) == []
        job_repo.get_posted_since.assert_called_once_with(posted_at)
        alert_repo.list_active.assert_not_called()


# ── Hand-off to delivery ────────────────────────────────


def _make_slow_sender(name: str, gate: asyncio.Event, delivered: list) -> MagicMock:
    async def send(payload):
        await gate.wait()
        delivered.append((name, payload.recipient))
        return True

    sender = MagicMock()
    sender.name = name
    sender.send = AsyncMock(side_effect=send)
    return sender


class TestDeliveryHandOff:
    @pytest.mark.asyncio
    async def test_scan_returns_before_slow_sender(
        self, alert_repo, job_repo, sample_job, sample_alert, posted_at,
    ):
        gate = asyncio.Event()
        delivered: list = []
        records = AsyncMock()
        records.claim.side_effect = lambda alert_id, channel, job_ids: set(job_ids)
        router = ChannelRouter(
            [_make_slow_sender(n, gate, delivered) for n in ("site", "email")],
            records,
            volume=AsyncMock(),
        )
        scheduler = DispatchScheduler(
            alert_repo, job_repo, router, InMemoryBucketStore(), InMemoryDeferredStore(),
        )
        scanner = AlertScanner(alert_repo, job_repo, scheduler)

        result = await asyncio.wait_for(
            scanner.scan_job(sample_job, alerts=[sample_alert], now=posted_at),
            timeout=1.0,
        )

        assert result.matched == 1
        assert delivered == []
        assert scheduler.in_flight == 1

        gate.set()
        await scheduler.drain()

        assert sorted(delivered) == [("email", "david@example.org"), ("site", "user_1")]
        assert scheduler.in_flight == 0
