"""Tests for the alert preference and send record repositories with a mocked Database."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from src.alerts.repository import (
    AlertPreferenceRepository,
    SendRecordRepository,
    _row_to_alert,
)
from src.alerts.schemas import AlertPreference, ChannelSendRecord, DoNotDisturb

T0 = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_db():
    db = AsyncMock()
    return db


@pytest.fixture
def repo(mock_db):
    return AlertPreferenceRepository(mock_db)


@pytest.fixture
def records(mock_db):
    return SendRecordRepository(mock_db)


def _make_db_row(**overrides):
    """Create a mock asyncpg Record as a dict."""
    row = {
        "alert_id": "alert_001",
        "owner_id": "user_1",
        "name": "הובלות",
        "filters": {"location": "ירושלים", "min_hourly_rate": "50", "payment_methods": ["payslip"]},
        "frequency": "daily",
        "notification_days": [0, 1, 2],
        "dnd_start": "22:00",
        "dnd_end": "07:00",
        "delivery": {"site": True, "email": True, "whatsapp": False, "tzintuk": False},
        "alert_email": None,
        "alert_whatsapp_phone": None,
        "alert_tzintuk_phone": "0521111111",
        "owner_name": "דוד",
        "owner_email": "david@example.org",
        "owner_phone": "0501234567",
        "is_active": True,
        "last_checked_at": None,
        "created_at": T0,
    }
    row.update(overrides)
    return row


class TestRowToAlert:
    """Test the module-level _row_to_alert helper."""

    def test_basic_conversion(self):
        alert = _row_to_alert(_make_db_row())
        assert alert.alert_id == "alert_001"
        assert alert.location == "ירושלים"
        assert alert.min_hourly_rate == "50"
        assert alert.payment_methods == frozenset({"payslip"})
        assert alert.frequency == "daily"
        assert alert.notification_days == frozenset({0, 1, 2})
        assert alert.do_not_disturb == DoNotDisturb(start="22:00", end="07:00")
        assert alert.delivery.enabled() == ["site", "email"]

    def test_jsonb_as_string(self):
        row = _make_db_row(
            filters=json.dumps({"difficulty": "easy"}),
            delivery=json.dumps({"tzintuk": True}),
        )
        alert = _row_to_alert(row)
        assert alert.difficulty == "easy"
        assert alert.delivery.enabled() == ["site", "tzintuk"]

    def test_missing_window(self):
        alert = _row_to_alert(_make_db_row(dnd_start=None))
        assert alert.do_not_disturb is None

    def test_contact_fallbacks(self):
        alert = _row_to_alert(_make_db_row())
        assert alert.contact_for("email") == "david@example.org"
        assert alert.contact_for("tzintuk") == "0521111111"
        assert alert.contact_for("whatsapp") == "0501234567"
        assert alert.contact_for("site") == "user_1"


# ── AlertPreferenceRepository ───────────────────────────


class TestSave:
    @pytest.mark.asyncio
    async def test_save_serializes_filters(self, repo, mock_db):
        mock_db.fetchrow.return_value = _make_db_row()
        alert = AlertPreference(
            alert_id="alert_001",
            owner_id="user_1",
            name="הובלות",
            location="ירושלים",
            min_hourly_rate="50",
            frequency="daily",
            notification_days={2, 0, 1},
            do_not_disturb=DoNotDisturb(start="22:00", end="07:00"),
        )

        saved = await repo.save(alert)

        assert saved.alert_id == "alert_001"
        args = mock_db.fetchrow.call_args[0]
        assert "ON CONFLICT (alert_id) DO UPDATE" in args[0]
        assert "last_checked_at" not in args[0]
        filters = json.loads(args[4])
        assert filters["location"] == "ירושלים"
        assert args[6] == [0, 1, 2]
        assert args[7] == "22:00"


class TestCursor:
    @pytest.mark.asyncio
    async def test_advance_uses_greatest(self, repo, mock_db):
        mock_db.fetchval.return_value = "alert_001"

        assert await repo.advance_last_checked("alert_001", T0) is True
        sql = mock_db.fetchval.call_args[0][0]
        assert "GREATEST(last_checked_at, $2)" in sql

    @pytest.mark.asyncio
    async def test_advance_missing_alert(self, repo, mock_db):
        mock_db.fetchval.return_value = None
        assert await repo.advance_last_checked("nope", T0) is False

    @pytest.mark.asyncio
    async def test_advance_many_empty_is_noop(self, repo, mock_db):
        await repo.advance_many([], T0)
        mock_db.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_advance_many(self, repo, mock_db):
        await repo.advance_many(["a", "b"], T0)
        args = mock_db.execute.call_args[0]
        assert "GREATEST" in args[0]
        assert args[1] == ["a", "b"]
        assert args[2] == T0


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_many_keys_by_id(self, repo, mock_db):
        mock_db.fetch.return_value = [
            _make_db_row(alert_id="a1"),
            _make_db_row(alert_id="a2"),
        ]
        result = await repo.get_many(["a1", "a2", "gone"])
        assert set(result) == {"a1", "a2"}

    @pytest.mark.asyncio
    async def test_get_many_empty(self, repo, mock_db):
        assert await repo.get_many([]) == {}
        mock_db.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_active(self, repo, mock_db):
        mock_db.fetch.return_value = [_make_db_row()]
        alerts = await repo.list_active()
        assert len(alerts) == 1
        assert "is_active = TRUE" in mock_db.fetch.call_args[0][0]

    @pytest.mark.asyncio
    async def test_set_active_and_delete(self, repo, mock_db):
        mock_db.fetchval.return_value = "alert_001"
        assert await repo.set_active("alert_001", False) is True
        assert mock_db.fetchval.call_args[0][2] is False

        mock_db.fetchval.return_value = None
        assert await repo.delete("alert_001") is False


# ── SendRecordRepository ────────────────────────────────


class TestSendRecords:
    @pytest.mark.asyncio
    async def test_record_ignores_duplicate_sent(self, records, mock_db):
        record = ChannelSendRecord(
            channel="email", alert_id="a1", job_id="j1", status="sent",
        )
        await records.record(record)

        args = mock_db.execute.call_args[0]
        assert "WHERE status = 'sent' DO NOTHING" in args[0]
        assert args[2:6] == ("email", "a1", "j1", "sent")

    @pytest.mark.asyncio
    async def test_record_batch_isolates_failures(self, records, mock_db):
        mock_db.execute.side_effect = [None, RuntimeError("db hiccup"), None]
        batch = [
            ChannelSendRecord(channel="site", alert_id="a1", job_id=f"j{i}", status="sent")
            for i in range(3)
        ]
        assert await records.record_batch(batch) == 2

    @pytest.mark.asyncio
    async def test_claim_returns_inserted_ids(self, records, mock_db):
        mock_db.fetch.return_value = [{"job_id": "j2"}]
        assert await records.claim("a1", "email", ["j1", "j2"]) == {"j2"}

        args = mock_db.fetch.call_args[0]
        assert "INSERT INTO channel_send_claims" in args[0]
        assert "ON CONFLICT DO NOTHING" in args[0]
        assert "status = 'sent'" in args[0]
        assert args[1:] == ("a1", "email", ["j1", "j2"])

    @pytest.mark.asyncio
    async def test_claim_empty_skips_query(self, records, mock_db):
        assert await records.claim("a1", "email", []) == set()
        mock_db.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_release_claims(self, records, mock_db):
        await records.release_claims("a1", "tzintuk", ["j1"])
        args = mock_db.execute.call_args[0]
        assert "DELETE FROM channel_send_claims" in args[0]
        assert args[1:] == ("a1", "tzintuk", ["j1"])

        mock_db.execute.reset_mock()
        await records.release_claims("a1", "tzintuk", [])
        mock_db.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_count_since_with_channel(self, records, mock_db):
        mock_db.fetchval.return_value = 4
        assert await records.count_since(T0, channel="tzintuk") == 4
        args = mock_db.fetchval.call_args[0]
        assert "channel = $3" in args[0]
        assert args[1:] == ("sent", T0, "tzintuk")

    @pytest.mark.asyncio
    async def test_count_total_none(self, records, mock_db):
        mock_db.fetchval.return_value = None
        assert await records.count_total() == 0

    def test_invalid_status_rejected(self):
        with pytest.raises(ValueError):
            ChannelSendRecord(channel="email", alert_id="a", job_id="j", status="queued")
