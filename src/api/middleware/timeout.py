"""
Request timeout middleware.

A stalled database or Redis call must not hold a job-creation hook open
indefinitely: the request is abandoned with 504 once the budget runs out.
The scan itself is idempotent (dedup and cursors), so the caller may retry
the hook or leave the job to the ticker's catch-up sweep.
"""

import asyncio

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

# Health checks and forced dispatch (which may fan out many releases)
DEFAULT_EXCLUDED_PREFIXES = ("/health", "/dispatch/force")


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Return 504 when a request exceeds ``timeout_seconds``."""

    def __init__(
        self,
        app,
        timeout_seconds: float = 30.0,
        excluded_prefixes: tuple[str, ...] = DEFAULT_EXCLUDED_PREFIXES,
    ):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds
        self.excluded_prefixes = excluded_prefixes

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path.startswith(self.excluded_prefixes):
            return await call_next(request)

        try:
            async with asyncio.timeout(self.timeout_seconds):
                return await call_next(request)
        except TimeoutError:
            logger.warning(
                "Request timed out",
                path=path,
                method=request.method,
                timeout_seconds=self.timeout_seconds,
            )
            return JSONResponse(
                status_code=504,
                content={"detail": "Request timed out", "timeout_seconds": self.timeout_seconds},
            )
