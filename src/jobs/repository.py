"""Job repository for the alert engine's read paths.

Job CRUD belongs to the posting UI; the engine only stores the record it
receives from the creation hook and reads jobs back when a digest or a
deferred match is released.
"""

import json
import logging
from datetime import datetime
from typing import Any

from src.jobs.schemas import Job, JobSuitability
from src.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id            TEXT PRIMARY KEY,
    title             TEXT NOT NULL,
    area              TEXT NOT NULL DEFAULT '',
    poster_id         TEXT NOT NULL,
    payment_kind      TEXT NOT NULL,
    hourly_rate       DOUBLE PRECISION,
    global_amount     DOUBLE PRECISION,
    payment_method    TEXT,
    difficulty        TEXT,
    suitability       JSONB NOT NULL DEFAULT '{}',
    date_type         TEXT NOT NULL,
    specific_date     DATE,
    duration_hours    DOUBLE PRECISION,
    duration_flexible BOOLEAN NOT NULL DEFAULT FALSE,
    people_needed     INTEGER,
    description       TEXT NOT NULL DEFAULT '',
    posted_at         TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_jobs_posted_at ON jobs(posted_at);
"""

_INSERT_SQL = """
INSERT INTO jobs (
    job_id, title, area, poster_id, payment_kind, hourly_rate,
    global_amount, payment_method, difficulty, suitability, date_type,
    specific_date, duration_hours, duration_flexible, people_needed,
    description, posted_at
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
ON CONFLICT (job_id) DO NOTHING
"""

# A job is pending while some active alert (not owned by the poster) has a
# cursor that does not yet cover it.
_COUNT_PENDING_SQL = """
SELECT COUNT(*) FROM jobs j
WHERE j.posted_at >= $1
  AND EXISTS (
    SELECT 1 FROM alert_preferences a
    WHERE a.is_active = TRUE
      AND a.owner_id <> j.poster_id
      AND (a.last_checked_at IS NULL OR a.last_checked_at < j.posted_at)
  )
"""


class JobRepository:
    """Repository for job persistence and lookup."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the jobs table and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Jobs table ensured")

    async def create(self, job: Job) -> None:
        """Insert a job. Re-delivery of the creation hook is a no-op."""
        await self._db.execute(
            _INSERT_SQL,
            job.job_id,
            job.title,
            job.area,
            job.poster_id,
            job.payment_kind,
            job.hourly_rate,
            job.global_amount,
            job.payment_method,
            job.difficulty,
            json.dumps(job.suitability.to_dict()),
            job.date_type,
            job.specific_date,
            job.duration_hours,
            job.duration_flexible,
            job.people_needed,
            job.description,
            job.posted_at,
        )

    async def get_by_id(self, job_id: str) -> Job | None:
        row = await self._db.fetchrow("SELECT * FROM jobs WHERE job_id = $1", job_id)
        if row is None:
            return None
        return _row_to_job(row)

    async def get_many(self, job_ids: list[str]) -> list[Job]:
        """Fetch jobs by id, oldest first. Deleted jobs are silently absent."""
        if not job_ids:
            return []
        rows = await self._db.fetch(
            "SELECT * FROM jobs WHERE job_id = ANY($1::text[]) ORDER BY posted_at ASC",
            list(job_ids),
        )
        return [_row_to_job(row) for row in rows]

    async def get_posted_since(self, since: datetime, limit: int = 500) -> list[Job]:
        """Jobs posted at or after ``since``, oldest first."""
        rows = await self._db.fetch(
            """
            SELECT * FROM jobs
            WHERE posted_at >= $1
            ORDER BY posted_at ASC
            LIMIT $2
            """,
            since,
            limit,
        )
        return [_row_to_job(row) for row in rows]

    async def delete(self, job_id: str) -> bool:
        result = await self._db.fetchval(
            "DELETE FROM jobs WHERE job_id = $1 RETURNING job_id", job_id,
        )
        return result is not None

    async def count_pending(self, since: datetime) -> int:
        """Count recent jobs that at least one active alert has not covered yet.

        Args:
            since: Only jobs posted at or after this instant are considered.

        Returns:
            Number of pending jobs.
        """
        count = await self._db.fetchval(_COUNT_PENDING_SQL, since)
        return count or 0


def _row_to_job(row: Any) -> Job:
    """Convert an asyncpg Record to a Job."""
    suitability = row.get("suitability") or {}
    if isinstance(suitability, str):
        suitability = json.loads(suitability)

    return Job(
        job_id=row["job_id"],
        title=row["title"],
        area=row["area"],
        poster_id=row["poster_id"],
        payment_kind=row["payment_kind"],
        hourly_rate=row.get("hourly_rate"),
        global_amount=row.get("global_amount"),
        payment_method=row.get("payment_method"),
        difficulty=row.get("difficulty"),
        suitability=JobSuitability.from_dict(suitability),
        date_type=row["date_type"],
        specific_date=row.get("specific_date"),
        duration_hours=row.get("duration_hours"),
        duration_flexible=row.get("duration_flexible", False),
        people_needed=row.get("people_needed"),
        description=row.get("description", ""),
        posted_at=row["posted_at"],
    )
