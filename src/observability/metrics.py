"""
Prometheus metrics for monitoring alert matching and dispatch.

Defines and exposes metrics for:
- Job scans and alert matches
- Per-alert scan errors
- Channel send outcomes (sent, failed, skipped)
- Volume cap denials on the phone channel
- Scheduler backlog (pending digest buckets, deferred matches)

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the job-alerts engine.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_match("instant")
        metrics.record_send("email", "sent", latency=0.4)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.jobs_scanned = Counter(
            "job_alerts_jobs_scanned_total",
            "Total jobs scanned against active alerts",
        )

        self.alert_matches = Counter(
            "job_alerts_matches_total",
            "Total (alert, job) matches emitted",
            ["frequency"],  # instant, daily, weekly
        )

        self.scan_errors = Counter(
            "job_alerts_scan_errors_total",
            "Per-alert scan failures (alert skipped for that job)",
            ["error_type"],
        )

        self.channel_sends = Counter(
            "job_alerts_channel_sends_total",
            "Channel delivery outcomes",
            ["channel", "status"],  # status: sent, failed, skipped_*
        )

        self.channel_latency = Histogram(
            "job_alerts_channel_latency_seconds",
            "Time spent delivering one release through a channel",
            ["channel"],
            buckets=LATENCY_BUCKETS,
        )

        self.volume_denials = Counter(
            "job_alerts_volume_denials_total",
            "Sends refused because the daily volume cap was reached",
            ["channel"],
        )

        self.pending_buckets = Gauge(
            "job_alerts_pending_buckets",
            "Digest buckets waiting for their window boundary",
        )

        self.deferred_matches = Gauge(
            "job_alerts_deferred_matches",
            "Instant matches held back by quiet hours",
        )

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_scan(self, matches_by_frequency: dict[str, int]) -> None:
        """Record one job scan and the matches it produced."""
        self.jobs_scanned.inc()
        for frequency, count in matches_by_frequency.items():
            if count:
                self.alert_matches.labels(frequency=frequency).inc(count)

    def record_scan_error(self, error_type: str) -> None:
        self.scan_errors.labels(error_type=error_type).inc()

    def record_send(
        self,
        channel: str,
        status: str,
        latency: float | None = None,
    ) -> None:
        """
        Record a channel delivery outcome.

        Args:
            channel: Channel name (site, email, whatsapp, tzintuk)
            status: Send status
            latency: Optional delivery latency in seconds
        """
        self.channel_sends.labels(channel=channel, status=status).inc()
        if latency is not None:
            self.channel_latency.labels(channel=channel).observe(latency)
        if status == "skipped_volume_cap":
            self.volume_denials.labels(channel=channel).inc()

    def set_backlog(self, pending_buckets: int, deferred_matches: int) -> None:
        self.pending_buckets.set(pending_buckets)
        self.deferred_matches.set(deferred_matches)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
