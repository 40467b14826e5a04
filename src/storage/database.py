"""
PostgreSQL connection pool shared by the alert engine's repositories.

Every repository (alerts, send records, jobs, site notifications, call
sessions) receives the same ``Database`` and issues single statements
through it; tables are created by each repository's ``create_table()``.
"""

import logging
from typing import Any

import asyncpg

from src.config.settings import get_settings

logger = logging.getLogger(__name__)


class Database:
    """
    Async PostgreSQL pool wrapper.

    Usage:
        db = Database()
        await db.connect()
        alerts = AlertPreferenceRepository(db)
        ...
        await db.close()
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        command_timeout: float | None = None,
    ):
        settings = get_settings()

        self._database_url = database_url or str(settings.database_url)
        self._min_size = min_size or settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size
        self._command_timeout = command_timeout or settings.db_command_timeout_seconds

        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Create the connection pool. Raises if the server is unreachable."""
        try:
            self._pool = await asyncpg.create_pool(
                self._database_url,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
            )
        except Exception as e:
            logger.error("Failed to connect to database: %s", e)
            raise

        logger.info("Database connected (pool: %d-%d)", self._min_size, self._max_size)

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection closed")

    @property
    def pool(self) -> asyncpg.Pool:
        """Get connection pool, raising if not connected."""
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def execute(self, query: str, *args: Any) -> str:
        """Execute a statement. Returns the PostgreSQL status string."""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self.pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self) -> bool:
        """True if the pool is connected and answers ``SELECT 1``."""
        if self._pool is None:
            return False
        try:
            return await self.fetchval("SELECT 1") == 1
        except Exception as e:
            logger.warning("Database health check failed: %s", e)
            return False
