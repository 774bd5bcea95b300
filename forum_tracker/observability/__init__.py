"""Observability layer - logging and metrics."""

from forum_tracker.observability.logging import setup_logging
from forum_tracker.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
