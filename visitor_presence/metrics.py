"""
Prometheus Metrics for Visitor Presence
=======================================

Usage:
    from visitor_presence.metrics import PresenceMetrics, record_store_error

    PresenceMetrics.pageviews_total.labels(unique="true").inc()
    record_store_error("get_active_count")
"""

from prometheus_client import Counter, Gauge, Histogram, make_asgi_app
import structlog

logger = structlog.get_logger(__name__)


class PresenceMetrics:
    """Metrics for the presence and session engine."""

    # Pageviews ingested
    pageviews_total = Counter(
        'visitor_presence_pageviews_total',
        'Total pageviews processed by the tracker',
        ['unique']  # unique: true, false
    )

    # Last successful active visitor count
    active_visitors = Gauge(
        'visitor_presence_active_visitors',
        'Visitors active within the presence window'
    )

    # Sessions created vs advanced
    session_operations_total = Counter(
        'visitor_presence_session_operations_total',
        'Session store operations',
        ['operation', 'outcome']  # outcome: created, found, updated, missing, degraded
    )

    # Backing store failures per component operation
    store_errors_total = Counter(
        'visitor_presence_store_errors_total',
        'Backing store failures absorbed by graceful degradation',
        ['operation']
    )

    # Store command latency
    store_command_duration = Histogram(
        'visitor_presence_store_command_duration_seconds',
        'Redis command duration in seconds',
        ['command'],
        buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0)
    )


def record_store_error(operation: str):
    """Count a degraded component call."""
    PresenceMetrics.store_errors_total.labels(operation=operation).inc()


def setup_metrics_endpoint(app):
    """
    Mount the Prometheus exposition endpoint on a FastAPI app.

    Args:
        app: FastAPI app
    """
    app.mount("/metrics", make_asgi_app())
    logger.info("metrics_endpoint_mounted", path="/metrics")
