"""
Prometheus metrics collection for shipment-intake

Counts upload outcomes, audit log writes and field commits, and times
extraction API calls.
"""
import os
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# WORKFLOW METRICS
# =======================

# outcome: needs_review, failed
uploads_total = Counter(
    name="intake_uploads_total",
    documentation="Total number of upload workflows by final outcome",
    labelnames=["outcome"],
    registry=REGISTRY,
)

uploaded_files_total = Counter(
    name="intake_uploaded_files_total",
    documentation="Total number of files submitted for extraction",
    labelnames=["file_type"],
    registry=REGISTRY,
)

# outcome: committed, rejected, persist_failed
field_commits_total = Counter(
    name="intake_field_commits_total",
    documentation="Field edit commits by outcome",
    labelnames=["outcome"],
    registry=REGISTRY,
)

completions_total = Counter(
    name="intake_completions_total",
    documentation="Shipment requests marked completed",
    registry=REGISTRY,
)

# =======================
# EXTERNAL CALL METRICS
# =======================

extraction_duration_seconds = Histogram(
    name="intake_extraction_duration_seconds",
    documentation="Time spent waiting for the extraction API",
    labelnames=["outcome"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=REGISTRY,
)

# outcome: success, failure
audit_log_writes_total = Counter(
    name="intake_audit_log_writes_total",
    documentation="Audit log inserts by outcome",
    labelnames=["status", "outcome"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 9108)
    """
    # Lazy import: only bind a port when the endpoint is requested
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "9108"))
    start_http_server(metrics_port, registry=REGISTRY)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    if labels:
        counter.labels(**labels).inc(value)
    else:
        counter.inc(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    """
    Record an observation in a histogram

    Args:
        histogram: Prometheus Histogram metric
        value: Observed value
        **labels: Label values for the metric
    """
    histogram.labels(**labels).observe(value)
