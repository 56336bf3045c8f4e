"""Prometheus scrape endpoint (mounted at the app root, outside the API prefix)."""

from fastapi import APIRouter, Response

from sellerops.api.v1.dependencies import JobQueueDep
from sellerops.shared.telemetry.metrics import get_metrics_response, update_job_queue_length

router = APIRouter()


@router.get("/metrics", include_in_schema=False)
async def prometheus_metrics(queue: JobQueueDep) -> Response:
    update_job_queue_length(await queue.count_by_status())
    return get_metrics_response()
