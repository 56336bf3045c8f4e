"""Dead-letter API: inspect and replay jobs that exhausted their retries."""

from fastapi import APIRouter, Query

from sellerops.api.v1.dependencies import JobQueueDep
from sellerops.domain.exceptions import ResourceNotFoundException
from sellerops.schemas.job import DeadLetterReplayRequest, DeadLetterResponse, JobResponse

router = APIRouter()


@router.get("", response_model=list[DeadLetterResponse])
async def list_dead_letters(
    queue: JobQueueDep,
    include_resolved: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    entries = await queue.list_dead_letters(
        include_resolved=include_resolved, limit=limit, offset=skip
    )
    return [DeadLetterResponse.model_validate(e) for e in entries]


@router.get("/{job_id}", response_model=DeadLetterResponse)
async def get_dead_letter(job_id: int, queue: JobQueueDep):
    entry = await queue.get_dead_letter(job_id)
    if entry is None:
        raise ResourceNotFoundException("dead_letter", job_id)
    return DeadLetterResponse.model_validate(entry)


@router.post("/{job_id}/replay", response_model=JobResponse, status_code=201)
async def replay_dead_letter(
    job_id: int, queue: JobQueueDep, body: DeadLetterReplayRequest | None = None
):
    """Enqueue a fresh copy of the dead-lettered job and mark the entry resolved."""
    job = await queue.replay_dead_letter(job_id, notes=body.notes if body else None)
    return JobResponse.model_validate(job)
