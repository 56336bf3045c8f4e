"""Job API: enqueue, inspect and cancel jobs."""

from typing import Annotated

from fastapi import APIRouter, Query

from sellerops.api.v1.dependencies import JobQueueDep
from sellerops.domain.exceptions import ResourceNotFoundException
from sellerops.schemas.job import JobEnqueueRequest, JobResponse, JobStatsResponse
from sellerops.shared.enums import JobStatus

router = APIRouter()


@router.post("", response_model=JobResponse, status_code=201)
async def enqueue_job(body: JobEnqueueRequest, queue: JobQueueDep):
    """Enqueue a job. A dedup_key matching a live job of the same type returns that job."""
    job = await queue.enqueue(
        body.job_type,
        body.payload,
        max_attempts=body.max_attempts,
        correlation_id=body.correlation_id,
        scheduled_for=body.scheduled_for,
        dedup_key=body.dedup_key,
        entity_id=body.entity_id,
    )
    return JobResponse.model_validate(job)


@router.get("", response_model=list[JobResponse])
async def list_jobs(
    queue: JobQueueDep,
    status: Annotated[list[JobStatus] | None, Query()] = None,
    job_type: Annotated[list[str] | None, Query()] = None,
    entity_id: str | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """List jobs, newest first, optionally filtered by status, type and entity."""
    jobs = await queue.list_jobs(
        statuses=status, job_types=job_type, entity_id=entity_id, limit=limit, offset=skip
    )
    return [JobResponse.model_validate(j) for j in jobs]


@router.get("/stats", response_model=JobStatsResponse)
async def job_stats(queue: JobQueueDep):
    counts = await queue.count_by_status()
    full = {s.value: counts.get(s.value, 0) for s in JobStatus}
    return JobStatsResponse(counts=full, total=sum(full.values()))


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: int, queue: JobQueueDep):
    job = await queue.get(job_id)
    if job is None:
        raise ResourceNotFoundException("job", job_id)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: int, queue: JobQueueDep):
    """Cancel a PENDING or RUNNING job. Running handlers stop cooperatively."""
    return JobResponse.model_validate(await queue.cancel(job_id))
