"""Call session store used by the phone (IVR) channel.

One JSONB document per call in the ``call_sessions`` table. Every ``set``
stamps ``updated_at``. The store never expires sessions; the call-flow
layer decides staleness with ``CallSession.is_stale``. Storage errors are
not masked: a lost session is visible mid-call, so they propagate.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from src.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS call_sessions (
    call_id    TEXT PRIMARY KEY,
    payload    JSONB NOT NULL DEFAULT '{}',
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


@dataclass
class CallSession:
    """State of one in-progress call."""

    call_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def is_stale(self, timeout: timedelta, now: datetime | None = None) -> bool:
        """Whether the session is older than the caller's timeout."""
        now = now or datetime.now(timezone.utc)
        return now - self.updated_at > timeout

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "payload": self.payload,
            "updated_at": self.updated_at.isoformat(),
        }


class CallSessionStore:
    """Postgres-backed document-per-call session store."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the call_sessions table (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Call sessions table ensured")

    async def get(self, call_id: str) -> CallSession | None:
        """Fetch a session, or None if the call has none."""
        row = await self._db.fetchrow(
            "SELECT * FROM call_sessions WHERE call_id = $1", call_id,
        )
        if row is None:
            return None
        return _row_to_session(row)

    async def set(
        self,
        call_id: str,
        payload: dict[str, Any],
        now: datetime | None = None,
    ) -> CallSession:
        """Create or replace a session, stamping ``updated_at``.

        Args:
            call_id: Call identifier (the provider's call id).
            payload: Arbitrary JSON-serializable session state.
            now: Timestamp to stamp (defaults to the wall clock).

        Returns:
            The stored session.
        """
        session = CallSession(
            call_id=call_id,
            payload=payload,
            updated_at=now or datetime.now(timezone.utc),
        )
        await self._db.execute(
            """
            INSERT INTO call_sessions (call_id, payload, updated_at)
            VALUES ($1, $2, $3)
            ON CONFLICT (call_id) DO UPDATE SET
                payload = EXCLUDED.payload,
                updated_at = EXCLUDED.updated_at
            """,
            session.call_id,
            json.dumps(session.payload, ensure_ascii=False),
            session.updated_at,
        )
        return session

    async def delete(self, call_id: str) -> None:
        """Remove a session when the call ends (absent sessions are fine)."""
        await self._db.execute("DELETE FROM call_sessions WHERE call_id = $1", call_id)


def _row_to_session(row: Any) -> CallSession:
    """Convert an asyncpg Record to a CallSession."""
    payload = row.get("payload") or {}
    if isinstance(payload, str):
        payload = json.loads(payload)

    return CallSession(
        call_id=row["call_id"],
        payload=payload,
        updated_at=row["updated_at"],
    )
