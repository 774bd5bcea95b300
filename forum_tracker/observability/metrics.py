"""
Prometheus metrics for monitoring the forum pipeline.

Defines and exposes metrics for:
- Origin fetch outcomes and latency
- Throttling and outbound rate-limit waits
- Cache reads by tier
- Refresh runs and tenant/member pipeline errors

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

from forum_tracker.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
REFRESH_BUCKETS = (1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the forum-tracker pipeline.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_fetch("gov.uniswap.org", "ok", latency=0.42)
        metrics.record_cache_read("memory")
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Origin fetches
        self.origin_fetches = Counter(
            "forum_tracker_origin_fetches_total",
            "Total origin fetches",
            ["origin", "outcome"],  # outcome: ok, unreachable, http_status, throttled, malformed
        )

        self.fetch_latency = Histogram(
            "forum_tracker_fetch_latency_seconds",
            "Time to fetch and parse one origin",
            ["origin"],
            buckets=LATENCY_BUCKETS,
        )

        self.throttle_retries = Counter(
            "forum_tracker_throttle_retries_total",
            "Total retries after HTTP 429",
            ["domain"],
        )

        self.rate_limit_waits = Counter(
            "forum_tracker_rate_limit_waits_total",
            "Times a request waited on the outbound per-domain limiter",
            ["domain"],
        )

        # Cache
        self.cache_reads = Counter(
            "forum_tracker_cache_reads_total",
            "Cache reads by serving tier",
            ["tier"],  # ephemeral, memory, durable, miss
        )

        self.tier_errors = Counter(
            "forum_tracker_cache_tier_errors_total",
            "Errors talking to a cache tier",
            ["tier", "operation"],
        )

        # Refresh
        self.refresh_runs = Counter(
            "forum_tracker_refresh_runs_total",
            "Refresh invocations by outcome",
            ["status"],  # completed, skipped_in_progress, skipped_locked
        )

        self.refresh_duration = Histogram(
            "forum_tracker_refresh_duration_seconds",
            "Duration of completed refresh cycles",
            buckets=REFRESH_BUCKETS,
        )

        self.refresh_in_progress = Gauge(
            "forum_tracker_refresh_in_progress",
            "1 while a refresh cycle runs in this process",
        )

        # Tenant pipeline
        self.tenant_refreshes = Counter(
            "forum_tracker_tenant_refreshes_total",
            "Tenant refreshes by outcome",
            ["status"],  # ok, error
        )

        self.member_errors = Counter(
            "forum_tracker_member_errors_total",
            "Per-member fetch/upsert failures during sync or refresh",
            ["stage"],  # directory, stats, upsert
        )

        self.snapshots_created = Counter(
            "forum_tracker_snapshots_created_total",
            "Member snapshots written",
        )

        logger.info("Prometheus metrics initialized")

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

    def record_fetch(self, origin: str, outcome: str, latency: float | None = None) -> None:
        """
        Record one origin fetch.

        Args:
            origin: Origin key
            outcome: "ok" or a FetchErrorKind value
            latency: Optional fetch latency in seconds
        """
        self.origin_fetches.labels(origin=origin, outcome=outcome).inc()
        if latency is not None:
            self.fetch_latency.labels(origin=origin).observe(latency)

    def record_cache_read(self, tier: str) -> None:
        """Record which tier served a read ("miss" when none did)."""
        self.cache_reads.labels(tier=tier).inc()

    def record_tier_error(self, tier: str, operation: str) -> None:
        self.tier_errors.labels(tier=tier, operation=operation).inc()

    def record_refresh(self, status: str, duration: float | None = None) -> None:
        """
        Record a refresh invocation.

        Args:
            status: Summary status
            duration: Cycle duration in seconds (completed runs only)
        """
        self.refresh_runs.labels(status=status).inc()
        if duration is not None:
            self.refresh_duration.observe(duration)

    def set_refresh_in_progress(self, running: bool) -> None:
        self.refresh_in_progress.set(1 if running else 0)

    def record_member_error(self, stage: str) -> None:
        self.member_errors.labels(stage=stage).inc()


_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
