"""In-app (site) notifications.

One ``job_alert_match`` row per (alert, job): the id is derived from the
pair so a repeated write is a no-op.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from src.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS site_notifications (
    notification_id TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    type            TEXT NOT NULL,
    title           TEXT NOT NULL,
    message         TEXT NOT NULL,
    link            TEXT,
    is_read         BOOLEAN NOT NULL DEFAULT FALSE,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_site_notifications_user
    ON site_notifications(user_id, created_at DESC);
"""


@dataclass
class SiteNotification:
    """An in-app notification shown in the user's notification list."""

    notification_id: str
    user_id: str
    title: str
    message: str
    link: str | None = None
    type: str = "job_alert_match"
    is_read: bool = False
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @staticmethod
    def match_id(alert_id: str, job_id: str) -> str:
        return f"notif_{alert_id}_{job_id}"


class NotificationRepository:
    """Repository for site notifications."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Site notifications table ensured")

    async def create(self, notification: SiteNotification) -> bool:
        """Insert a notification.

        Returns:
            True if inserted, False if it already existed.
        """
        result = await self._db.fetchval(
            """
            INSERT INTO site_notifications (
                notification_id, user_id, type, title, message, link,
                is_read, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (notification_id) DO NOTHING
            RETURNING notification_id
            """,
            notification.notification_id,
            notification.user_id,
            notification.type,
            notification.title,
            notification.message,
            notification.link,
            notification.is_read,
            notification.created_at,
        )
        return result is not None

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[SiteNotification]:
        rows = await self._db.fetch(
            """
            SELECT * FROM site_notifications
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2
            """,
            user_id,
            limit,
        )
        return [_row_to_notification(row) for row in rows]


def _row_to_notification(row: Any) -> SiteNotification:
    return SiteNotification(
        notification_id=row["notification_id"],
        user_id=row["user_id"],
        type=row["type"],
        title=row["title"],
        message=row["message"],
        link=row.get("link"),
        is_read=row.get("is_read", False),
        created_at=row["created_at"],
    )
