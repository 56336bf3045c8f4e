"""Job worker and pool tests: retries, dead-lettering, timeouts, cancellation, shutdown."""

import asyncio

import pytest

from sellerops.application.services.retry_policy import RetryPolicy
from sellerops.domain.exceptions import PermanentJobError
from sellerops.infrastructure.jobs import (
    InMemoryJobQueue,
    JobHandlerRegistry,
    JobWorker,
    JobWorkerPool,
    StaleClaimSweeper,
)
from sellerops.shared.enums import JobStatus
from sellerops.shared.telemetry import metrics


@pytest.fixture
def fast_queue() -> InMemoryJobQueue:
    """Queue whose retries are due almost immediately."""
    return InMemoryJobQueue(RetryPolicy(base_seconds=0.001, max_seconds=0.001, jitter=0.0))


async def _wait_for_status(queue: InMemoryJobQueue, job_id: int, status: JobStatus) -> None:
    for _ in range(200):
        job = await queue.get(job_id)
        if job.status is status:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"job {job_id} never reached {status}")


async def test_always_failing_handler_gets_max_attempts_then_one_dead_letter(
    fast_queue: InMemoryJobQueue,
) -> None:
    calls: list[int] = []

    async def always_fails(job, ctx):
        calls.append(job.attempt)
        raise RuntimeError("upstream 500")

    registry = JobHandlerRegistry()
    registry.register("SYNC_CATALOG", always_fails)
    worker = JobWorker(fast_queue, registry)
    job = await fast_queue.enqueue("SYNC_CATALOG", {}, max_attempts=3)

    for _ in range(3):
        await asyncio.sleep(0.01)
        assert await worker.run_once() is True
    await asyncio.sleep(0.01)
    assert await worker.run_once() is False

    assert calls == [1, 2, 3]
    final = await fast_queue.get(job.id)
    assert final.status is JobStatus.FAILED
    assert final.attempt == 3
    entries = await fast_queue.list_dead_letters()
    assert len(entries) == 1
    assert entries[0].attempts_made == 3
    assert "upstream 500" in entries[0].error_message


async def test_success_stores_result(fast_queue: InMemoryJobQueue) -> None:
    async def ok(job, ctx):
        return {"echo": job.payload["v"]}

    registry = JobHandlerRegistry()
    registry.register("ECHO", ok)
    job = await fast_queue.enqueue("ECHO", {"v": 7})
    await JobWorker(fast_queue, registry).run_once()
    done = await fast_queue.get(job.id)
    assert done.status is JobStatus.SUCCEEDED
    assert done.result == {"echo": 7}


async def test_permanent_error_and_unknown_type_dead_letter_immediately(
    fast_queue: InMemoryJobQueue,
) -> None:
    async def bad(job, ctx):
        raise PermanentJobError("payload invalid")

    registry = JobHandlerRegistry()
    registry.register("BAD", bad)
    worker = JobWorker(fast_queue, registry)
    bad_job = await fast_queue.enqueue("BAD", {}, max_attempts=5)
    unknown_job = await fast_queue.enqueue("NOPE", {}, max_attempts=5)
    await worker.run_once()
    await worker.run_once()
    for job_id in (bad_job.id, unknown_job.id):
        job = await fast_queue.get(job_id)
        assert job.status is JobStatus.FAILED
        assert job.attempt == 1
    assert len(await fast_queue.list_dead_letters()) == 2


async def test_timeout_counts_as_failed_attempt(fast_queue: InMemoryJobQueue) -> None:
    contexts = []

    async def slow(job, ctx):
        contexts.append(ctx)
        await asyncio.sleep(5)

    registry = JobHandlerRegistry()
    registry.register("SLOW", slow, timeout_seconds=0.05)
    job = await fast_queue.enqueue("SLOW", {}, max_attempts=2)
    await JobWorker(fast_queue, registry).run_once()
    after = await fast_queue.get(job.id)
    assert after.status is JobStatus.PENDING
    assert "timed out" in after.error_message
    assert contexts[0].abandoned


async def test_cooperative_cancel_leaves_job_cancelled(fast_queue: InMemoryJobQueue) -> None:
    started = asyncio.Event()
    proceed = asyncio.Event()

    async def long_job(job, ctx):
        started.set()
        await proceed.wait()
        await ctx.raise_if_cancelled()
        return {"finished": True}

    registry = JobHandlerRegistry()
    registry.register("LONG", long_job)
    job = await fast_queue.enqueue("LONG", {})
    run = asyncio.create_task(JobWorker(fast_queue, registry).run_once())
    await started.wait()
    await fast_queue.cancel(job.id)
    proceed.set()
    await run
    final = await fast_queue.get(job.id)
    assert final.status is JobStatus.CANCELLED
    assert final.result is None


async def test_context_enqueue_propagates_correlation(fast_queue: InMemoryJobQueue) -> None:
    async def parent(job, ctx):
        child = await ctx.enqueue("CHILD", {"n": 1})
        return {"child": child.id}

    registry = JobHandlerRegistry()
    registry.register("PARENT", parent)
    job = await fast_queue.enqueue("PARENT", {})
    await JobWorker(fast_queue, registry).run_once()
    child_id = (await fast_queue.get(job.id)).result["child"]
    assert (await fast_queue.get(child_id)).correlation_id == f"job:{job.id}"


def test_registry_rejects_duplicates_and_reports_timeouts() -> None:
    registry = JobHandlerRegistry(default_timeout_seconds=300, type_timeouts={"A": 10})

    async def handler(job, ctx):
        return None

    registry.register("A", handler)
    with pytest.raises(ValueError):
        registry.register("A", handler)
    assert registry.timeout_for("A") == 10
    assert registry.timeout_for("B") == 300
    assert "A" in registry


async def test_graceful_shutdown_finishes_in_flight_job_and_stops_claiming(
    fast_queue: InMemoryJobQueue,
) -> None:
    started = asyncio.Event()

    async def work(job, ctx):
        started.set()
        await asyncio.sleep(0.1)
        return {"done": job.id}

    registry = JobHandlerRegistry()
    registry.register("WORK", work)
    first = await fast_queue.enqueue("WORK", {})
    pool = JobWorkerPool(fast_queue, registry, concurrency=1, poll_interval_seconds=0.01)
    await pool.start()
    await started.wait()
    second = await fast_queue.enqueue("WORK", {})

    await pool.stop(grace_seconds=5)

    assert (await fast_queue.get(first.id)).status is JobStatus.SUCCEEDED
    assert (await fast_queue.get(second.id)).status is JobStatus.PENDING
    assert not pool.is_running


async def test_grace_period_elapsed_leaves_job_running_for_sweeper(
    fast_queue: InMemoryJobQueue,
) -> None:
    started = asyncio.Event()

    async def stuck(job, ctx):
        started.set()
        await asyncio.sleep(60)

    registry = JobHandlerRegistry(default_timeout_seconds=120)
    registry.register("STUCK", stuck)
    job = await fast_queue.enqueue("STUCK", {})
    pool = JobWorkerPool(fast_queue, registry, concurrency=1, poll_interval_seconds=0.01)
    await pool.start()
    await started.wait()
    await pool.stop(grace_seconds=0.05)
    assert (await fast_queue.get(job.id)).status is JobStatus.RUNNING

    sweeper = StaleClaimSweeper(fast_queue, JobHandlerRegistry(default_timeout_seconds=0), grace_seconds=0)
    assert await sweeper.sweep_once() == 1
    assert (await fast_queue.get(job.id)).status is JobStatus.PENDING


async def test_pool_runs_jobs_concurrently(fast_queue: InMemoryJobQueue) -> None:
    running = 0
    peak = 0

    async def track(job, ctx):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.05)
        running -= 1

    registry = JobHandlerRegistry()
    registry.register("T", track)
    ids = [(await fast_queue.enqueue("T", {})).id for _ in range(4)]
    pool = JobWorkerPool(fast_queue, registry, concurrency=4, poll_interval_seconds=0.01)
    await pool.start()
    for job_id in ids:
        await _wait_for_status(fast_queue, job_id, JobStatus.SUCCEEDED)
    await pool.stop()
    assert peak > 1


async def test_failures_and_handler_notes_land_in_job_log(fast_queue: InMemoryJobQueue) -> None:
    async def flaky(job, ctx):
        await ctx.log("calling marketplace", region="US")
        if job.attempt == 1:
            raise RuntimeError("upstream 500")
        return {"ok": True}

    registry = JobHandlerRegistry()
    registry.register("FLAKY_LOG", flaky)
    worker = JobWorker(fast_queue, registry)
    job = await fast_queue.enqueue("FLAKY_LOG", {})
    await worker.run_once()
    await asyncio.sleep(0.01)
    await worker.run_once()

    log = (await fast_queue.get(job.id)).log
    assert [(e["message"], e["attempt"]) for e in log] == [
        ("calling marketplace", 1),
        ("attempt failed", 1),
        ("calling marketplace", 2),
    ]
    assert log[0]["region"] == "US"
    assert log[1]["error"] == "RuntimeError: upstream 500"


async def test_worker_records_job_metrics(fast_queue: InMemoryJobQueue) -> None:
    def sample(name: str, **labels: str) -> float:
        return metrics.registry.get_sample_value(name, labels) or 0.0

    async def flaky(job, ctx):
        if job.attempt == 1:
            raise RuntimeError("upstream 500")

    registry = JobHandlerRegistry()
    registry.register("METRICS_FLAKY", flaky)
    worker = JobWorker(fast_queue, registry)
    await fast_queue.enqueue("METRICS_FLAKY", {})
    await worker.run_once()
    await asyncio.sleep(0.01)
    await worker.run_once()

    assert sample("jobs_total", type="METRICS_FLAKY", status="RETRY") == 1
    assert sample("jobs_total", type="METRICS_FLAKY", status="SUCCEEDED") == 1
    assert sample("job_retries_total", type="METRICS_FLAKY") == 1
    assert sample("job_duration_seconds_count", type="METRICS_FLAKY") == 2

    await StaleClaimSweeper(fast_queue, registry).sweep_once()
    assert sample("job_queue_length", status="SUCCEEDED") >= 1


async def test_worker_on_superseded_claim_does_not_settle(fast_queue: InMemoryJobQueue) -> None:
    async def ok(job, ctx):
        return {"by": job.attempt}

    registry = JobHandlerRegistry()
    registry.register("ECHO", ok)
    job = await fast_queue.enqueue("ECHO", {})
    first = await fast_queue.claim_next()
    await fast_queue.reclaim_stale(lambda job_type: -1.0, grace_seconds=0.0)
    second = await fast_queue.claim_next()

    await JobWorker(fast_queue, registry).process(first)

    current = await fast_queue.get(job.id)
    assert current.status is JobStatus.RUNNING
    assert current.attempt == second.attempt == 2
    assert current.result is None
