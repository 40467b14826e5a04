"""
Health check endpoint: PostgreSQL, Redis and the dispatch backlog.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends

from src.alerts.service import AlertEngine
from src.api.dependencies import get_alert_engine, get_database, get_redis_client
from src.api.models import ComponentHealth, HealthResponse
from src.observability.metrics import get_metrics
from src.storage.database import Database

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _check_component(check: Callable[[], Awaitable[object]]) -> ComponentHealth:
    """Run one connectivity check, timing it. Falsy or raising = unhealthy."""
    start = time.perf_counter()
    details: dict = {}
    try:
        ok = bool(await check())
    except Exception as e:
        ok = False
        details = {"error": str(e)}
    return ComponentHealth(
        status="healthy" if ok else "unhealthy",
        latency_ms=round((time.perf_counter() - start) * 1000, 2),
        details=details,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Check the health of the service and its dependencies.",
)
async def health_check(
    db: Database = Depends(get_database),
    redis_client=Depends(get_redis_client),
    engine: AlertEngine = Depends(get_alert_engine),
) -> HealthResponse:
    """
    Status logic:
    - unhealthy: database is down (no alerts, no send records)
    - degraded: Redis is down (buckets and the call cap are unavailable)
    - healthy: all components operational

    The backlog is only read from a reachable Redis; a failing read is
    reported as zero without changing the status.
    """
    database, cache = await asyncio.gather(
        _check_component(db.health_check),
        _check_component(redis_client.ping),
    )

    pending_buckets = deferred = 0
    if cache.status == "healthy":
        try:
            pending_buckets, deferred = await engine.scheduler.backlog()
            get_metrics().set_backlog(pending_buckets, deferred)
        except Exception as e:
            logger.warning("Backlog check failed", error=str(e))

    if database.status == "unhealthy":
        status = "unhealthy"
    elif cache.status == "unhealthy":
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(
        status=status,
        components={"database": database, "redis": cache},
        pending_buckets=pending_buckets,
        deferred_matches=deferred,
        version="0.1.0",
    )
