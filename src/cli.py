"""
Command-line interface for job-alerts.

Provides commands to initialize the database, run the dispatch ticker
and the API server, and operate the engine by hand.

Usage:
    job-alerts init-db         # Create tables
    job-alerts ticker          # Run the minute ticker
    job-alerts sweep           # Catch-up scan of recent jobs
    job-alerts force-dispatch  # Release everything pending now
    job-alerts stats           # Print dispatch statistics
    job-alerts health          # Check service health
    job-alerts serve           # Start the API server
"""

import asyncio
import signal
import sys

import click

from src.config.settings import get_settings
from src.observability.logging import setup_logging
from src.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Job Alerts - match posted jobs to alerts and deliver notifications."""
    setup_logging("DEBUG" if debug else None)

    # Initialize tracing if enabled
    settings = get_settings()
    if settings.tracing_enabled:
        from src.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


async def _open_engine(use_redis: bool = True):
    """Connect to PostgreSQL (and Redis) and wire an engine.

    Returns:
        (engine, database, redis_client); the caller closes both connections.
    """
    import redis.asyncio as redis

    from src.alerts.service import AlertEngine
    from src.storage.database import Database

    settings = get_settings()
    db = Database()
    await db.connect()

    redis_client = None
    if use_redis:
        redis_client = redis.from_url(
            str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
        )

    engine = AlertEngine.build(db, redis_client, timezone_name=settings.timezone)
    return engine, db, redis_client


async def _close(db, redis_client) -> None:
    if redis_client is not None:
        await redis_client.close()
    await db.close()


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""

    async def run():
        engine, db, redis_client = await _open_engine(use_redis=False)
        try:
            await engine.create_tables()
            click.echo("Database initialized successfully")
        finally:
            await _close(db, redis_client)

    asyncio.run(run())


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def ticker(metrics: bool, metrics_port: int | None) -> None:
    """Run the dispatch ticker (releases deferred matches and digests)."""
    from src.alerts.ticker import AlertTicker

    async def run():
        engine, db, redis_client = await _open_engine()
        worker = AlertTicker(engine, database=db, redis_client=redis_client)

        if metrics:
            get_metrics().start_server(port=metrics_port)

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(worker.stop()))

        await worker.start()

    asyncio.run(run())


@main.command()
@click.option("--hours", default=None, type=int, help="Lookback in hours (default from config)")
def sweep(hours: int | None) -> None:
    """Scan recently posted jobs against alerts that have not covered them."""
    from datetime import datetime, timedelta, timezone

    async def run():
        engine, db, redis_client = await _open_engine()
        try:
            if hours is not None:
                since = datetime.now(timezone.utc) - timedelta(hours=hours)
                results = await engine.sweep(since=since)
            else:
                results = await engine.sweep()

            click.echo("\nSweep Results")
            click.echo("=" * 40)
            click.echo(f"  Jobs scanned:  {len(results)}")
            click.echo(f"  Matches:       {sum(r.matched for r in results)}")
            click.echo(f"  Errors:        {sum(r.errors for r in results)}")
        finally:
            await engine.drain()
            await _close(db, redis_client)

    asyncio.run(run())


@main.command("force-dispatch")
def force_dispatch() -> None:
    """Release every pending digest and deferred match now.

    Quiet hours are bypassed; dedup and the daily call cap still apply.

    Example:
        job-alerts force-dispatch
    """

    async def run():
        engine, db, redis_client = await _open_engine()
        try:
            result = await engine.force_dispatch()

            click.echo("\nForced Dispatch")
            click.echo("=" * 40)
            click.echo(f"  Releases:   {result.releases}")
            click.echo(f"  Deferred:   {result.deferred}")
            click.echo(f"  Discarded:  {result.discarded}")
            click.echo(f"  Errors:     {result.errors}")
        finally:
            await _close(db, redis_client)

    asyncio.run(run())


@main.command()
def stats() -> None:
    """Show dispatch statistics for today."""

    async def run():
        engine, db, redis_client = await _open_engine()
        try:
            result = await engine.stats()

            click.echo("\nDispatch Statistics")
            click.echo("=" * 40)
            for name, value in result.to_dict().items():
                click.echo(f"  {name:18s} {value}")
        finally:
            await _close(db, redis_client)

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}

        # Check Redis
        try:
            import redis.asyncio as redis

            client = redis.from_url(str(get_settings().redis_url))
            results["redis"] = bool(await client.ping())
            await client.close()
        except Exception as e:
            results["redis"] = False
            logger.error("Redis health check failed", error=str(e))

        # Check PostgreSQL
        try:
            from src.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        # Check channel transports
        from src.delivery.transports import EmailConfig, WhatsAppConfig, YemotConfig

        results["email_configured"] = EmailConfig().is_configured
        results["whatsapp_configured"] = WhatsAppConfig().is_configured
        results["yemot_configured"] = YemotConfig().is_configured

        # Print results
        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("redis", "postgres") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
@click.option("--metrics-port", default=8000, help="Metrics server port")
def serve(host: str | None, port: int | None, reload: bool, metrics_port: int) -> None:
    """Start the job-alerts API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    # Start metrics server on separate port
    get_metrics().start_server(port=metrics_port)

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"Metrics available on http://localhost:{metrics_port}/metrics")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "src.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
