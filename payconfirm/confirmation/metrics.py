"""Prometheus metrics instrumentation for the confirmation engine.

Collection is always on (prometheus_client keeps counters in process memory);
the HTTP exporter only starts when ``PAYCONFIRM_PROMETHEUS_ENABLED`` is true.
"""

from typing import Any

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from ..utils.config import Settings, get_settings
from ..utils.logging import get_logger

logger = get_logger(__name__)

# ============================================================================
# Metric Definitions
# ============================================================================

# Counter: Raw texts delivered by ingestion adapters
events_ingested_total = Counter(
    "payconfirm_events_ingested_total",
    "Total number of notification/SMS texts delivered to the engine",
    ["source_channel", "outcome"],  # labels: notification/sms, confirmed/no_match/...
)

# Counter: Confirmations performed
confirmations_total = Counter(
    "payconfirm_confirmations_total",
    "Total number of confirmed payments",
    ["mode"],  # labels: automatic/manual
)

# Counter: Manual reviews requested
manual_reviews_requested_total = Counter(
    "payconfirm_manual_reviews_requested_total",
    "Total number of matches sent to manual review",
    ["source_channel"],
)

# Counter: Pending payments evicted by the sweeper
payments_expired_total = Counter(
    "payconfirm_payments_expired_total",
    "Total number of pending payments evicted as stale",
)

# Gauge: Pending payments
pending_payments_count = Gauge(
    "payconfirm_pending_payments_count",
    "Current number of payments awaiting confirmation",
)

# Histogram: Match confidence scores
match_confidence_scores = Histogram(
    "payconfirm_match_confidence_scores",
    "Distribution of match confidence scores",
    ["source_channel"],
    buckets=(50, 60, 70, 75, 80, 85, 90, 95, 100),
)

# Histogram: Pipeline duration
event_processing_duration_seconds = Histogram(
    "payconfirm_event_processing_duration_seconds",
    "Time taken to parse, match and dispatch one text",
    ["source_channel"],
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5),
)


# ============================================================================
# Metrics Server
# ============================================================================


def start_metrics_server(port: int | None = None, settings: Settings | None = None) -> bool:
    """Start the Prometheus HTTP exporter if enabled.

    Args:
        port: Port to expose metrics on (default: ``settings.metrics_port``)
        settings: Settings to read the enable flag from (default: process settings)

    Returns:
        True if the exporter was started
    """
    settings = settings or get_settings()
    if not settings.prometheus_enabled:
        return False

    port = port or settings.metrics_port
    try:
        start_http_server(port)
    except OSError as e:
        # Port already in use, skip
        logger.warning("metrics_server_unavailable", port=port, error=str(e))
        return False

    logger.info("metrics_server_started", port=port)
    return True


# ============================================================================
# Convenience Functions
# ============================================================================


def record_ingested_event(source_channel: str, outcome: str) -> None:
    events_ingested_total.labels(source_channel=source_channel, outcome=outcome).inc()


def record_confirmation(mode: str) -> None:
    """Record a confirmed payment.

    Args:
        mode: Confirmation mode (automatic, manual)
    """
    confirmations_total.labels(mode=mode).inc()


def record_manual_review(source_channel: str) -> None:
    manual_reviews_requested_total.labels(source_channel=source_channel).inc()


def record_expired(count: int = 1) -> None:
    payments_expired_total.inc(count)


def record_match_confidence(source_channel: str, confidence: int) -> None:
    match_confidence_scores.labels(source_channel=source_channel).observe(confidence)


def update_pending_count(count: int) -> None:
    pending_payments_count.set(count)


# ============================================================================
# Context Managers for Duration Tracking
# ============================================================================


class track_processing_duration:
    """Context manager to track per-text pipeline duration."""

    def __init__(self, source_channel: str):
        self.source_channel = source_channel
        self.timer: Any = None

    def __enter__(self) -> "track_processing_duration":
        self.timer = event_processing_duration_seconds.labels(
            source_channel=self.source_channel
        ).time()
        self.timer.__enter__()
        return self

    def __exit__(self, *args: Any) -> None:
        if self.timer:
            self.timer.__exit__(*args)
