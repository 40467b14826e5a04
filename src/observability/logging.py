"""
Structured logging configuration using structlog.

Orchestrators (scanner, scheduler, engine, ticker, API) log through
structlog with bound fields such as ``job_id``, ``alert_id`` and
``channel``; library modules use stdlib ``logging``, which is routed to the
same output. JSON in production, coloured console output in development.
Hebrew job titles and area names are rendered unescaped in both.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from src.config.settings import get_settings
from src.observability.tracing import add_trace_context

# Transport and driver chatter that would drown per-job scan logs
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "asyncpg", "redis")


def setup_logging(level: str | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Overrides ``Settings.log_level`` (e.g. ``"DEBUG"`` from the
            CLI's ``--debug`` flag).
    """
    settings = get_settings()
    level_name = level or settings.log_level

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        add_trace_context,
    ]

    if settings.is_production:
        renderer: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name),
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
