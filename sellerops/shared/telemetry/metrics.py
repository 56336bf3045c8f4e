"""Prometheus job metrics.

Exposed on GET /metrics (scraped from the API process). The worker process
records into the same module-level registry; when it runs standalone the
numbers are its own.

Metrics:
- jobs_total{type, status}: settled attempts by outcome
- job_duration_seconds{type}: handler wall time
- job_retries_total{type}: attempts started after the first
- job_queue_length{status}: jobs per status, refreshed by the sweeper
"""

from collections.abc import Mapping

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

registry = CollectorRegistry()

jobs_total = Counter(
    name="jobs_total",
    documentation="Job attempts by type and outcome",
    labelnames=["type", "status"],
    registry=registry,
)

job_duration_seconds = Histogram(
    name="job_duration_seconds",
    documentation="Job handler duration in seconds",
    labelnames=["type"],
    buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 120, 300),
    registry=registry,
)

job_retries_total = Counter(
    name="job_retries_total",
    documentation="Job attempts that were retries",
    labelnames=["type"],
    registry=registry,
)

job_queue_length = Gauge(
    name="job_queue_length",
    documentation="Jobs currently in each status",
    labelnames=["status"],
    registry=registry,
)


def record_job_event(
    job_type: str,
    status: str,
    duration_seconds: float | None = None,
    is_retry: bool = False,
) -> None:
    """Record one settled attempt.

    Args:
        job_type: Handler job type.
        status: Outcome label (SUCCEEDED, RETRY, FAILED, CANCELLED, TIMEOUT).
        duration_seconds: Handler wall time, when the handler ran.
        is_retry: True when this attempt was not the first.
    """
    jobs_total.labels(type=job_type, status=status).inc()
    if duration_seconds is not None:
        job_duration_seconds.labels(type=job_type).observe(duration_seconds)
    if is_retry:
        job_retries_total.labels(type=job_type).inc()


def update_job_queue_length(counts: Mapping[str, int]) -> None:
    for status, count in counts.items():
        job_queue_length.labels(status=status).set(count)


def get_metrics_response() -> Response:
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
