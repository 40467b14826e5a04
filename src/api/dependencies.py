"""
Dependency injection for FastAPI endpoints.

One database pool, one Redis client and one ``AlertEngine`` per process,
created on first use. The engine shares the Redis client with the health
check so buckets, deferred matches and the daily call counter are the ones
the ticker process sees.
"""

from typing import AsyncGenerator

import redis.asyncio as redis

from src.alerts.config import AlertConfig, DispatchSettings
from src.alerts.service import AlertEngine
from src.config.settings import get_settings
from src.storage.database import Database

_redis_client: redis.Redis | None = None
_database: Database | None = None
_engine: AlertEngine | None = None


def _shared_redis() -> redis.Redis:
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.from_url(
            str(get_settings().redis_url),
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def get_redis_client() -> AsyncGenerator[redis.Redis, None]:
    """Redis client holding dispatch state."""
    yield _shared_redis()


async def get_database() -> Database:
    """Connected database instance."""
    global _database

    if _database is None:
        _database = Database()
        await _database.connect()

    return _database


async def get_alert_engine() -> AlertEngine:
    """Engine used by the job hooks and admin endpoints."""
    global _engine

    if _engine is None:
        settings = get_settings()
        _engine = AlertEngine.build(
            await get_database(),
            _shared_redis(),
            config=AlertConfig(),
            dispatch_settings=DispatchSettings(),
            timezone_name=settings.timezone,
        )

    return _engine


async def cleanup_dependencies() -> None:
    """Close the shared connections on shutdown."""
    global _redis_client, _database, _engine

    if _engine is not None:
        await _engine.drain()
        _engine = None

    if _database is not None:
        await _database.close()
        _database = None

    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None
