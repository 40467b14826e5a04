"""Tests for the channel router: fan-out, dedup, phone gating and isolation."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.alerts.config import AlertConfig, DispatchSettings
from src.alerts.schemas import AlertPreference, DeliveryMethods, MatchEvent, Release
from src.alerts.volume import VolumeLimiter
from src.delivery.router import ChannelRouter, NotificationConfig
from src.delivery.transports import TransportError
from src.jobs.schemas import Job
from src.queues.backoff import ExponentialBackoff
from src.queues.counters import InMemoryCounterStore

# Sunday 12:00 in Israel
T0 = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
# Sunday 23:30 in Israel, inside the global phone quiet hours
LATE = datetime(2026, 10, 18, 20, 30, tzinfo=timezone.utc)


def _sender(name: str, result: bool = True) -> MagicMock:
    sender = MagicMock()
    sender.name = name
    sender.send = AsyncMock(return_value=result)
    return sender


def _make_alert(alert_id: str = "alert_001", **delivery) -> AlertPreference:
    return AlertPreference(
        alert_id=alert_id,
        owner_id="user_1",
        name="הובלות",
        delivery=DeliveryMethods(**delivery) if delivery else DeliveryMethods(),
        owner_email="david@example.org",
        owner_phone="0501234567",
    )


def _make_release(alert: AlertPreference, job_ids=("j1",), **kwargs) -> Release:
    jobs = [
        Job(
            job_id=job_id,
            title=f"job {job_id}",
            area="ירושלים",
            poster_id="poster_1",
            hourly_rate=60.0,
            posted_at=T0 + timedelta(minutes=i),
        )
        for i, job_id in enumerate(job_ids)
    ]
    events = [
        MatchEvent(
            alert_id=alert.alert_id,
            job_id=job.job_id,
            job_posted_at=job.posted_at,
            matched_at=job.posted_at,
        )
        for job in jobs
    ]
    return Release(alert=alert, events=events, jobs=jobs, **kwargs)


@pytest.fixture
def senders():
    return {
        "site": _sender("site"),
        "email": _sender("email"),
        "whatsapp": _sender("whatsapp"),
        "tzintuk": _sender("tzintuk"),
    }


@pytest.fixture
def send_records():
    records = AsyncMock()
    records.claim.side_effect = lambda alert_id, channel, job_ids: set(job_ids)
    records.record_batch.return_value = 1
    return records


def _router(senders, send_records, cap: int = 0, **settings) -> ChannelRouter:
    dispatch_settings = DispatchSettings(max_calls_per_day=cap, **settings)
    volume = VolumeLimiter(
        InMemoryCounterStore(),
        dispatch_settings,
        AlertConfig(),
        backoff=ExponentialBackoff(base_delay=0.0, max_delay=0.0, jitter_range=0.0),
    )
    return ChannelRouter(
        list(senders.values()),
        send_records,
        volume,
        dispatch_settings=dispatch_settings,
        config=NotificationConfig(circuit_breaker_threshold=2),
        timezone_name="Asia/Jerusalem",
    )


def _recorded(send_records) -> list:
    return [r for call in send_records.record_batch.call_args_list for r in call[0][0]]


# ── Fan-out ─────────────────────────────────────────────


class TestFanOut:
    @pytest.mark.asyncio
    async def test_every_enabled_channel(self, senders, send_records):
        router = _router(senders, send_records)
        alert = _make_alert(site=True, email=True, whatsapp=True)

        statuses = await router.dispatch(_make_release(alert, ("j1", "j2")), now=T0)

        assert statuses == {"site": "sent", "email": "sent", "whatsapp": "sent"}
        senders["tzintuk"].send.assert_not_called()
        payload = senders["email"].send.call_args[0][0]
        assert payload.recipient == "david@example.org"
        assert [j.job_id for j in payload.jobs] == ["j1", "j2"]
        # One record per job per channel
        assert len(_recorded(send_records)) == 6

    @pytest.mark.asyncio
    async def test_site_recipient_is_owner(self, senders, send_records):
        router = _router(senders, send_records)
        await router.dispatch(_make_release(_make_alert()), now=T0)
        assert senders["site"].send.call_args[0][0].recipient == "user_1"

    @pytest.mark.asyncio
    async def test_release_channels_restrict_fan_out(self, senders, send_records):
        router = _router(senders, send_records)
        alert = _make_alert(site=True, email=True)

        statuses = await router.dispatch(
            _make_release(alert, channels=frozenset({"email"})), now=T0,
        )

        assert statuses == {"email": "sent"}
        senders["site"].send.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_channels(self, senders, send_records):
        router = _router(senders, send_records)
        alert = _make_alert(site=False)
        assert await router.dispatch(_make_release(alert), now=T0) == {}

    @pytest.mark.asyncio
    async def test_inactive_email_service(self, senders, send_records):
        router = _router(senders, send_records, is_email_service_active=False)
        alert = _make_alert(site=True, email=True)

        statuses = await router.dispatch(_make_release(alert), now=T0)

        assert statuses == {"site": "sent"}
        senders["email"].send.assert_not_called()
        assert {r.channel for r in _recorded(send_records)} == {"site"}

    def test_channels_for_drops_inactive_email(self, senders, send_records):
        router = _router(senders, send_records, is_email_service_active=False)
        alert = _make_alert(site=True, email=True, whatsapp=True)
        assert router.channels_for(_make_release(alert)) == ["site", "whatsapp"]


# ── Isolation ───────────────────────────────────────────


class TestIsolation:
    @pytest.mark.asyncio
    async def test_failing_channel_does_not_block_others(self, senders, send_records):
        senders["email"].send.side_effect = TransportError("Resend returned 400")
        router = _router(senders, send_records)
        alert = _make_alert(site=True, email=True)

        statuses = await router.dispatch(_make_release(alert), now=T0)

        assert statuses == {"site": "sent", "email": "failed"}
        failed = [r for r in _recorded(send_records) if r.channel == "email"]
        assert failed[0].status == "failed"
        assert "Resend returned 400" in failed[0].error

    @pytest.mark.asyncio
    async def test_false_result_is_failure(self, senders, send_records):
        senders["site"].send.return_value = False
        router = _router(senders, send_records)
        statuses = await router.dispatch(_make_release(_make_alert()), now=T0)
        assert statuses == {"site": "failed"}

    @pytest.mark.asyncio
    async def test_missing_contact_fails_channel(self, senders, send_records):
        router = _router(senders, send_records)
        alert = _make_alert(site=True, email=True)
        alert.owner_email = None

        statuses = await router.dispatch(_make_release(alert), now=T0)

        assert statuses == {"site": "sent", "email": "failed"}
        senders["email"].send.assert_not_called()

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self, senders, send_records):
        senders["whatsapp"].send.side_effect = TransportError("down")
        router = _router(senders, send_records)
        alert = _make_alert(site=False, whatsapp=True)

        for _ in range(3):
            statuses = await router.dispatch(_make_release(alert), now=T0)
            assert statuses == {"whatsapp": "failed"}

        # Threshold 2: the third release never reached the sender
        assert senders["whatsapp"].send.call_count == 2
        assert "circuit open" in _recorded(send_records)[-1].error


# ── Dedup ───────────────────────────────────────────────


class _ClaimingRecords:
    """In-memory send records with the claim table's one-holder rule."""

    def __init__(self) -> None:
        self.claims: set[tuple[str, str, str]] = set()
        self.records: list = []

    async def claim(self, alert_id, channel, job_ids):
        await asyncio.sleep(0)
        won = {j for j in job_ids if (alert_id, j, channel) not in self.claims}
        self.claims |= {(alert_id, j, channel) for j in won}
        return won

    async def release_claims(self, alert_id, channel, job_ids):
        self.claims -= {(alert_id, j, channel) for j in job_ids}

    async def record_batch(self, records):
        self.records.extend(records)
        return len(records)


class TestDedup:
    @pytest.mark.asyncio
    async def test_unclaimed_jobs_dropped(self, senders, send_records):
        send_records.claim.side_effect = None
        send_records.claim.return_value = {"j2"}
        router = _router(senders, send_records)
        alert = _make_alert(site=False, email=True)

        await router.dispatch(_make_release(alert, ("j1", "j2")), now=T0)

        send_records.claim.assert_awaited_once_with("alert_001", "email", ["j1", "j2"])
        payload = senders["email"].send.call_args[0][0]
        assert [j.job_id for j in payload.jobs] == ["j2"]
        assert [r.job_id for r in _recorded(send_records)] == ["j2"]

    @pytest.mark.asyncio
    async def test_fully_claimed_channel_is_noop(self, senders, send_records):
        send_records.claim.side_effect = None
        send_records.claim.return_value = set()
        router = _router(senders, send_records)

        statuses = await router.dispatch(_make_release(_make_alert()), now=T0)

        assert statuses == {}
        senders["site"].send.assert_not_called()
        send_records.record_batch.assert_not_called()

    @pytest.mark.asyncio
    async def test_sent_keeps_claim(self, senders, send_records):
        router = _router(senders, send_records)
        await router.dispatch(_make_release(_make_alert()), now=T0)
        send_records.release_claims.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_send_releases_claim(self, senders, send_records):
        senders["email"].send.side_effect = TransportError("Resend returned 500")
        router = _router(senders, send_records)
        alert = _make_alert(site=False, email=True)

        await router.dispatch(_make_release(alert, ("j1", "j2")), now=T0)

        send_records.release_claims.assert_awaited_once_with(
            "alert_001", "email", ["j1", "j2"],
        )

    @pytest.mark.asyncio
    async def test_claim_error_fails_channel(self, senders, send_records):
        send_records.claim.side_effect = ConnectionError("pool closed")
        router = _router(senders, send_records)

        statuses = await router.dispatch(_make_release(_make_alert()), now=T0)

        assert statuses == {"site": "failed"}
        senders["site"].send.assert_not_called()
        assert "dedup claim failed" in _recorded(send_records)[0].error

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_sends_once(self, senders):
        async def slow_send(payload):
            await asyncio.sleep(0.01)
            return True

        senders["email"].send.side_effect = slow_send
        records = _ClaimingRecords()
        router = _router(senders, records)
        alert = _make_alert(site=False, email=True)

        results = await asyncio.gather(
            router.dispatch(_make_release(alert), now=T0),
            router.dispatch(_make_release(alert), now=T0),
        )

        assert sorted(results, key=len) == [{}, {"email": "sent"}]
        assert senders["email"].send.call_count == 1
        assert [r.status for r in records.records] == ["sent"]


# ── Phone channel ───────────────────────────────────────


class TestPhone:
    @pytest.mark.asyncio
    async def test_inactive_phone_service(self, senders, send_records):
        router = _router(senders, send_records, is_phone_service_active=False)
        alert = _make_alert(site=True, tzintuk=True)

        statuses = await router.dispatch(_make_release(alert), now=T0)

        assert statuses == {"site": "sent"}
        senders["tzintuk"].send.assert_not_called()

    @pytest.mark.asyncio
    async def test_quiet_hours_skip(self, senders, send_records):
        router = _router(
            senders, send_records, quiet_hours_start=22, quiet_hours_end=7,
        )
        alert = _make_alert(site=True, tzintuk=True)

        statuses = await router.dispatch(_make_release(alert), now=LATE)

        assert statuses == {"site": "sent", "tzintuk": "skipped_quiet_hours"}
        senders["tzintuk"].send.assert_not_called()

    @pytest.mark.asyncio
    async def test_forced_release_ignores_quiet_hours(self, senders, send_records):
        router = _router(
            senders, send_records, quiet_hours_start=22, quiet_hours_end=7,
        )
        alert = _make_alert(site=False, tzintuk=True)

        statuses = await router.dispatch(_make_release(alert, forced=True), now=LATE)

        assert statuses == {"tzintuk": "sent"}

    @pytest.mark.asyncio
    async def test_one_call_per_release(self, senders, send_records):
        router = _router(senders, send_records)
        alert = _make_alert(site=False, tzintuk=True)

        await router.dispatch(_make_release(alert, ("j1", "j2", "j3")), now=T0)

        senders["tzintuk"].send.assert_called_once()
        assert senders["tzintuk"].send.call_args[0][0].recipient == "0501234567"

    @pytest.mark.asyncio
    async def test_daily_cap(self, senders, send_records):
        router = _router(senders, send_records, cap=3)
        alerts = [_make_alert(alert_id=f"a{i}", site=False, tzintuk=True) for i in range(5)]

        results = await asyncio.gather(
            *(router.dispatch(_make_release(alert), now=T0) for alert in alerts)
        )

        statuses = [r["tzintuk"] for r in results]
        assert statuses.count("sent") == 3
        assert statuses.count("skipped_volume_cap") == 2
        assert senders["tzintuk"].send.call_count == 3

        recorded = sorted(r.status for r in _recorded(send_records))
        assert recorded == ["sent"] * 3 + ["skipped_volume_cap"] * 2
        # Capped releases give their claims back for a later day
        assert send_records.release_claims.await_count == 2
