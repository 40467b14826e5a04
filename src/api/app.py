"""
FastAPI application factory for the job-alerts hooks and admin surface.

The posting UI calls ``POST /jobs/created`` after saving a job; the scan
runs inside that request and instant releases start in the background,
so the response never waits on a channel. Admins use ``/dispatch/*``.
"""

import time
import uuid
from contextlib import asynccontextmanager, nullcontext

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.dependencies import cleanup_dependencies
from src.api.middleware.timeout import TimeoutMiddleware
from src.api.routes import dispatch, health
from src.config.settings import get_settings
from src.observability.tracing import get_tracer, is_tracing_enabled, setup_tracing, traced

logger = structlog.get_logger(__name__)

API_VERSION = "0.1.0"


def _request_id(request: Request) -> str:
    """Incoming correlation header, or a fresh UUID."""
    return (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or str(uuid.uuid4())
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.tracing_enabled:
        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )
    logger.info("Job alerts API starting up", timezone=settings.timezone)

    yield

    logger.info("Job alerts API shutting down")
    await cleanup_dependencies()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    app = FastAPI(
        title="Job Alerts API",
        description=(
            "Matches newly posted jobs against user alert preferences and "
            "delivers the results over site, email, WhatsApp and tzintuk.\n\n"
            "Every endpoint except `/health` requires the `X-API-KEY` header."
        ),
        version=API_VERSION,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Service health checks"},
            {"name": "jobs", "description": "Job creation and deletion hooks"},
            {"name": "alerts", "description": "Alert cancellation hooks"},
            {"name": "dispatch", "description": "Forced dispatch and statistics"},
        ],
    )

    cors_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # Added before the logging middleware so it wraps the whole request
    if settings.request_timeout_seconds > 0:
        app.add_middleware(
            TimeoutMiddleware,
            timeout_seconds=settings.request_timeout_seconds,
        )

    @app.middleware("http")
    async def correlate_requests(request: Request, call_next):
        request_id = _request_id(request)
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.perf_counter()

        span_cm = (
            traced(
                get_tracer("job-alerts.api"),
                f"{request.method} {request.url.path}",
                {"http.method": request.method, "http.route": request.url.path,
                 "http.request_id": request_id},
            )
            if is_tracing_enabled()
            else nullcontext()
        )

        try:
            with span_cm as span:
                response = await call_next(request)
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                if span is not None:
                    span.set_attribute("http.status_code", response.status_code)

            response.headers["X-Request-ID"] = request_id
            logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_type": "internal"},
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(dispatch.router)

    @app.get("/", include_in_schema=False)
    async def root():
        return {"service": "Job Alerts API", "version": API_VERSION, "docs": "/docs"}

    return app
