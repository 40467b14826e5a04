"""Tests for job schemas and the job repository with a mocked Database."""

import json
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest

from src.jobs.repository import JobRepository, _row_to_job
from src.jobs.schemas import Job, JobSuitability

T0 = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


def _make_db_row(**overrides):
    row = {
        "job_id": "job_001",
        "title": "עזרה בהובלה",
        "area": "ירושלים",
        "poster_id": "poster_1",
        "payment_kind": "global",
        "hourly_rate": None,
        "global_amount": 400.0,
        "payment_method": "bank_transfer",
        "difficulty": "hard",
        "suitability": {"men": True, "women": False, "general": False, "min_age": 18},
        "date_type": "specificDate",
        "specific_date": date(2026, 10, 20),
        "duration_hours": 4.0,
        "duration_flexible": False,
        "people_needed": 2,
        "description": "",
        "posted_at": T0,
    }
    row.update(overrides)
    return row


# ── Schemas ─────────────────────────────────────────────


class TestJob:
    def test_invalid_payment_kind(self):
        with pytest.raises(ValueError, match="payment_kind"):
            Job(title="t", area="a", poster_id="p", payment_kind="barter")

    def test_invalid_date_type(self):
        with pytest.raises(ValueError, match="date_type"):
            Job(title="t", area="a", poster_id="p", date_type="someday")

    def test_rate_follows_payment_kind(self):
        assert Job(title="t", area="a", poster_id="p", hourly_rate=50.0).rate == 50.0
        job = Job(title="t", area="a", poster_id="p", payment_kind="global", global_amount=300.0)
        assert job.rate == 300.0

    def test_from_dict(self):
        job = Job.from_dict({
            "job_id": "job_9",
            "title": "t",
            "area": "בני ברק",
            "poster_id": "p",
            "specific_date": "2026-10-20T00:00:00",
            "date_type": "specificDate",
            "suitability": {"women": True, "general": False},
            "posted_at": "2026-10-18T09:00:00+00:00",
        })
        assert job.job_id == "job_9"
        assert job.specific_date == date(2026, 10, 20)
        assert job.suitability == JobSuitability(women=True, general=False)
        assert job.posted_at == T0

    def test_from_dict_defaults(self):
        job = Job.from_dict({"title": "t", "poster_id": "p", "job_id": None})
        assert job.job_id.startswith("job_")
        assert job.area == ""
        assert job.posted_at.tzinfo is not None

    def test_to_dict(self, sample_job):
        data = sample_job.to_dict()
        assert data["suitability"]["min_age"] == 18
        assert data["posted_at"] == "2026-10-18T09:00:00+00:00"


# ── Repository ──────────────────────────────────────────


class TestJobRepository:
    @pytest.fixture
    def mock_db(self):
        return AsyncMock()

    @pytest.fixture
    def repo(self, mock_db):
        return JobRepository(mock_db)

    def test_row_to_job(self):
        job = _row_to_job(_make_db_row(suitability=json.dumps({"men": True, "general": False})))
        assert job.payment_kind == "global"
        assert job.suitability.men is True
        assert job.rate == 400.0

    @pytest.mark.asyncio
    async def test_create_serializes_suitability(self, repo, mock_db, sample_job):
        await repo.create(sample_job)
        args = mock_db.execute.call_args[0]
        assert args[1] == "job_001"
        assert json.loads(args[10])["men"] is True

    @pytest.mark.asyncio
    async def test_get_many(self, repo, mock_db):
        mock_db.fetch.return_value = [_make_db_row()]
        jobs = await repo.get_many(["job_001", "gone"])
        assert [j.job_id for j in jobs] == ["job_001"]
        assert "ORDER BY posted_at ASC" in mock_db.fetch.call_args[0][0]

    @pytest.mark.asyncio
    async def test_get_many_empty(self, repo, mock_db):
        assert await repo.get_many([]) == []
        mock_db.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, repo, mock_db):
        mock_db.fetchrow.return_value = None
        assert await repo.get_by_id("nope") is None

    @pytest.mark.asyncio
    async def test_delete(self, repo, mock_db):
        mock_db.fetchval.return_value = "job_001"
        assert await repo.delete("job_001") is True
        mock_db.fetchval.return_value = None
        assert await repo.delete("job_001") is False

    @pytest.mark.asyncio
    async def test_count_pending_none(self, repo, mock_db):
        mock_db.fetchval.return_value = None
        assert await repo.count_pending(T0) == 0
