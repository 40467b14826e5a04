"""Repositories for alert preferences and channel send records.

``AlertPreferenceRepository`` stores the filter dimensions as a single
JSONB document and the scheduling/delivery fields as columns. The scanner
cursor (``last_checked_at``) is only ever moved forward, enforced in SQL
with ``GREATEST``.

``SendRecordRepository`` persists one row per delivery attempt and
answers the dedup question ("was this (alert, job, channel) already
sent?") plus the admin statistics counts. A partial unique index keeps
at most one ``sent`` row per triple.
"""

import json
import logging
from datetime import datetime
from typing import Any

from src.alerts.schemas import (
    AlertPreference,
    ChannelSendRecord,
    DeliveryMethods,
    DoNotDisturb,
)
from src.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_ALERTS_SQL = """
CREATE TABLE IF NOT EXISTS alert_preferences (
    alert_id             TEXT PRIMARY KEY,
    owner_id             TEXT NOT NULL,
    name                 TEXT NOT NULL DEFAULT '',
    filters              JSONB NOT NULL DEFAULT '{}',
    frequency            TEXT NOT NULL DEFAULT 'instant',
    notification_days    INTEGER[] NOT NULL DEFAULT '{}',
    dnd_start            TEXT,
    dnd_end              TEXT,
    delivery             JSONB NOT NULL DEFAULT '{"site": true}',
    alert_email          TEXT,
    alert_whatsapp_phone TEXT,
    alert_tzintuk_phone  TEXT,
    owner_name           TEXT,
    owner_email          TEXT,
    owner_phone          TEXT,
    is_active            BOOLEAN NOT NULL DEFAULT TRUE,
    last_checked_at      TIMESTAMPTZ,
    created_at           TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_alert_preferences_active
    ON alert_preferences(is_active) WHERE is_active = TRUE;
CREATE INDEX IF NOT EXISTS idx_alert_preferences_owner
    ON alert_preferences(owner_id);
"""

_UPSERT_ALERT_SQL = """
INSERT INTO alert_preferences (
    alert_id, owner_id, name, filters, frequency, notification_days,
    dnd_start, dnd_end, delivery, alert_email, alert_whatsapp_phone,
    alert_tzintuk_phone, owner_name, owner_email, owner_phone, is_active,
    created_at
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
ON CONFLICT (alert_id) DO UPDATE SET
    name = EXCLUDED.name,
    filters = EXCLUDED.filters,
    frequency = EXCLUDED.frequency,
    notification_days = EXCLUDED.notification_days,
    dnd_start = EXCLUDED.dnd_start,
    dnd_end = EXCLUDED.dnd_end,
    delivery = EXCLUDED.delivery,
    alert_email = EXCLUDED.alert_email,
    alert_whatsapp_phone = EXCLUDED.alert_whatsapp_phone,
    alert_tzintuk_phone = EXCLUDED.alert_tzintuk_phone,
    owner_name = EXCLUDED.owner_name,
    owner_email = EXCLUDED.owner_email,
    owner_phone = EXCLUDED.owner_phone,
    is_active = EXCLUDED.is_active
RETURNING *
"""

_CREATE_SEND_RECORDS_SQL = """
CREATE TABLE IF NOT EXISTS channel_send_records (
    record_id    TEXT PRIMARY KEY,
    channel      TEXT NOT NULL,
    alert_id     TEXT NOT NULL,
    job_id       TEXT NOT NULL,
    status       TEXT NOT NULL,
    error        TEXT,
    attempted_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_send_records_sent_once
    ON channel_send_records(alert_id, job_id, channel) WHERE status = 'sent';
CREATE INDEX IF NOT EXISTS idx_send_records_attempted_at
    ON channel_send_records(attempted_at);

CREATE TABLE IF NOT EXISTS channel_send_claims (
    alert_id   TEXT NOT NULL,
    job_id     TEXT NOT NULL,
    channel    TEXT NOT NULL,
    claimed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (alert_id, job_id, channel)
);
"""

_INSERT_SEND_RECORD_SQL = """
INSERT INTO channel_send_records (
    record_id, channel, alert_id, job_id, status, error, attempted_at
) VALUES ($1, $2, $3, $4, $5, $6, $7)
ON CONFLICT (alert_id, job_id, channel) WHERE status = 'sent' DO NOTHING
"""

# Jobs already delivered before claims existed are never claimable.
_CLAIM_SQL = """
INSERT INTO channel_send_claims (alert_id, job_id, channel)
SELECT $1, j.job_id, $2
FROM unnest($3::text[]) AS j(job_id)
WHERE NOT EXISTS (
    SELECT 1 FROM channel_send_records r
    WHERE r.alert_id = $1 AND r.job_id = j.job_id
      AND r.channel = $2 AND r.status = 'sent'
)
ON CONFLICT DO NOTHING
RETURNING job_id
"""


class AlertPreferenceRepository:
    """Repository for alert preference persistence and the scanner cursor."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the alert_preferences table and indexes (idempotent)."""
        await self._db.execute(_CREATE_ALERTS_SQL)
        logger.info("Alert preferences table ensured")

    async def save(self, alert: AlertPreference) -> AlertPreference:
        """Insert or update an alert. The scanner cursor is never overwritten.

        Args:
            alert: Alert to persist.

        Returns:
            The stored alert.
        """
        dnd = alert.do_not_disturb
        row = await self._db.fetchrow(
            _UPSERT_ALERT_SQL,
            alert.alert_id,
            alert.owner_id,
            alert.name,
            json.dumps(alert.filters_dict(), ensure_ascii=False),
            alert.frequency,
            sorted(alert.notification_days),
            dnd.start if dnd else None,
            dnd.end if dnd else None,
            json.dumps(alert.delivery.to_dict()),
            alert.alert_email,
            alert.alert_whatsapp_phone,
            alert.alert_tzintuk_phone,
            alert.owner_name,
            alert.owner_email,
            alert.owner_phone,
            alert.is_active,
            alert.created_at,
        )
        return _row_to_alert(row)

    async def get_by_id(self, alert_id: str) -> AlertPreference | None:
        row = await self._db.fetchrow(
            "SELECT * FROM alert_preferences WHERE alert_id = $1", alert_id,
        )
        if row is None:
            return None
        return _row_to_alert(row)

    async def get_many(self, alert_ids: list[str]) -> dict[str, AlertPreference]:
        """Fetch alerts by id. Deleted alerts are absent from the result."""
        if not alert_ids:
            return {}
        rows = await self._db.fetch(
            "SELECT * FROM alert_preferences WHERE alert_id = ANY($1::text[])",
            list(alert_ids),
        )
        alerts = [_row_to_alert(row) for row in rows]
        return {a.alert_id: a for a in alerts}

    async def list_active(self) -> list[AlertPreference]:
        """All active alerts, oldest first."""
        rows = await self._db.fetch(
            """
            SELECT * FROM alert_preferences
            WHERE is_active = TRUE
            ORDER BY created_at ASC
            """
        )
        return [_row_to_alert(row) for row in rows]

    async def advance_last_checked(self, alert_id: str, checked_at: datetime) -> bool:
        """Move an alert's scan cursor forward (never backward).

        Args:
            alert_id: Alert whose cursor moves.
            checked_at: The covered job's posting time.

        Returns:
            True if the alert exists.
        """
        result = await self._db.fetchval(
            """
            UPDATE alert_preferences
            SET last_checked_at = GREATEST(last_checked_at, $2)
            WHERE alert_id = $1
            RETURNING alert_id
            """,
            alert_id,
            checked_at,
        )
        return result is not None

    async def advance_many(self, alert_ids: list[str], checked_at: datetime) -> None:
        """Move several cursors forward in one statement."""
        if not alert_ids:
            return
        await self._db.execute(
            """
            UPDATE alert_preferences
            SET last_checked_at = GREATEST(last_checked_at, $2)
            WHERE alert_id = ANY($1::text[])
            """,
            list(alert_ids),
            checked_at,
        )

    async def set_active(self, alert_id: str, is_active: bool) -> bool:
        """Pause or resume an alert. Returns False if it does not exist."""
        result = await self._db.fetchval(
            """
            UPDATE alert_preferences SET is_active = $2
            WHERE alert_id = $1
            RETURNING alert_id
            """,
            alert_id,
            is_active,
        )
        return result is not None

    async def delete(self, alert_id: str) -> bool:
        result = await self._db.fetchval(
            "DELETE FROM alert_preferences WHERE alert_id = $1 RETURNING alert_id",
            alert_id,
        )
        return result is not None


class SendRecordRepository:
    """Repository for per-channel delivery attempt records."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the channel_send_records table and indexes (idempotent)."""
        await self._db.execute(_CREATE_SEND_RECORDS_SQL)
        logger.info("Channel send records table ensured")

    async def record(self, record: ChannelSendRecord) -> None:
        """Persist one attempt. A second ``sent`` row for a triple is ignored."""
        await self._db.execute(
            _INSERT_SEND_RECORD_SQL,
            record.record_id,
            record.channel,
            record.alert_id,
            record.job_id,
            record.status,
            record.error,
            record.attempted_at,
        )

    async def record_batch(self, records: list[ChannelSendRecord]) -> int:
        """Persist several attempts with per-record error handling.

        Returns:
            Number of records written.
        """
        written = 0
        for record in records:
            try:
                await self.record(record)
                written += 1
            except Exception as e:
                logger.error(
                    "Failed to persist send record %s/%s/%s: %s",
                    record.alert_id, record.job_id, record.channel, e,
                )
        return written

    async def claim(self, alert_id: str, channel: str, job_ids: list[str]) -> set[str]:
        """Atomically claim (alert, job, channel) triples before sending.

        Only one caller can hold a triple, so two concurrent dispatches of
        the same match deliver it once. Triples with a ``sent`` record are
        never claimable.

        Args:
            alert_id: Alert being dispatched.
            channel: Channel about to send.
            job_ids: Candidate jobs.

        Returns:
            The job ids this caller now holds.
        """
        if not job_ids:
            return set()
        rows = await self._db.fetch(_CLAIM_SQL, alert_id, channel, list(job_ids))
        return {row["job_id"] for row in rows}

    async def release_claims(self, alert_id: str, channel: str, job_ids: list[str]) -> None:
        """Drop claims after a failed or skipped send so a retry can reclaim."""
        if not job_ids:
            return
        await self._db.execute(
            """
            DELETE FROM channel_send_claims
            WHERE alert_id = $1 AND channel = $2 AND job_id = ANY($3::text[])
            """,
            alert_id,
            channel,
            list(job_ids),
        )

    async def count_since(
        self,
        since: datetime,
        *,
        status: str = "sent",
        channel: str | None = None,
    ) -> int:
        """Count records with a status attempted at or after ``since``.

        Args:
            since: Lower bound on attempted_at.
            status: Record status to count.
            channel: Optional channel filter.

        Returns:
            Number of matching records.
        """
        conditions = ["status = $1", "attempted_at >= $2"]
        params: list[Any] = [status, since]
        if channel is not None:
            conditions.append("channel = $3")
            params.append(channel)

        sql = f"SELECT COUNT(*) FROM channel_send_records WHERE {' AND '.join(conditions)}"
        count = await self._db.fetchval(sql, *params)
        return count or 0

    async def count_total(self, status: str = "sent") -> int:
        count = await self._db.fetchval(
            "SELECT COUNT(*) FROM channel_send_records WHERE status = $1", status,
        )
        return count or 0


def _row_to_alert(row: Any) -> AlertPreference:
    """Convert an asyncpg Record to an AlertPreference."""
    filters = row.get("filters") or {}
    if isinstance(filters, str):
        filters = json.loads(filters)

    delivery = row.get("delivery") or {}
    if isinstance(delivery, str):
        delivery = json.loads(delivery)

    dnd = None
    if row.get("dnd_start") and row.get("dnd_end"):
        dnd = DoNotDisturb(start=row["dnd_start"], end=row["dnd_end"])

    return AlertPreference.from_dict({
        "filters": filters,
        "alert_id": row["alert_id"],
        "owner_id": row["owner_id"],
        "name": row.get("name") or "",
        "frequency": row.get("frequency") or "instant",
        "notification_days": row.get("notification_days") or [],
        "do_not_disturb": dnd,
        "delivery": DeliveryMethods.from_dict(delivery),
        "alert_email": row.get("alert_email"),
        "alert_whatsapp_phone": row.get("alert_whatsapp_phone"),
        "alert_tzintuk_phone": row.get("alert_tzintuk_phone"),
        "owner_name": row.get("owner_name"),
        "owner_email": row.get("owner_email"),
        "owner_phone": row.get("owner_phone"),
        "is_active": row.get("is_active", True),
        "last_checked_at": row.get("last_checked_at"),
        "created_at": row.get("created_at"),
    })
