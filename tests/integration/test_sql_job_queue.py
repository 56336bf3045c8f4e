"""SqlJobQueue integration tests (SQLite via aiosqlite)."""

import asyncio
from datetime import timedelta

import pytest

from sellerops.application.services.retry_policy import RetryPolicy
from sellerops.domain.exceptions import InvalidJobStateException, ResourceNotFoundException
from sellerops.infrastructure.jobs import SqlJobQueue
from sellerops.infrastructure.persistence.database import session_scope
from sellerops.infrastructure.persistence.repositories.job_repo import JobRepository
from sellerops.shared.enums import JobStatus
from sellerops.shared.utils.datetime import utc_now


@pytest.fixture
def queue(session_factory) -> SqlJobQueue:
    return SqlJobQueue(
        session_factory, RetryPolicy(base_seconds=30.0, max_seconds=3600.0, jitter=0.0), 3
    )


async def test_enqueue_and_claim_increments_attempt(queue: SqlJobQueue) -> None:
    job = await queue.enqueue("SYNC_CATALOG", {"marketplace": "US"}, correlation_id="c-1")
    assert job.status is JobStatus.PENDING
    assert job.attempt == 0

    claimed = await queue.claim_next()
    assert claimed.id == job.id
    assert claimed.status is JobStatus.RUNNING
    assert claimed.attempt == 1
    assert claimed.payload == {"marketplace": "US"}
    assert await queue.claim_next() is None


async def test_claim_order_is_oldest_due_first(queue: SqlJobQueue) -> None:
    now = utc_now()
    later = await queue.enqueue("A", {}, scheduled_for=now - timedelta(seconds=5))
    earlier = await queue.enqueue("A", {}, scheduled_for=now - timedelta(seconds=50))
    await queue.enqueue("A", {}, scheduled_for=now + timedelta(hours=1))
    assert (await queue.claim_next()).id == earlier.id
    assert (await queue.claim_next()).id == later.id
    assert await queue.claim_next() is None


async def test_second_claim_of_same_job_loses(queue: SqlJobQueue) -> None:
    job = await queue.enqueue("A", {})
    assert await queue.claim(job.id) is not None
    assert await queue.claim(job.id) is None


async def test_failure_backs_off_then_dead_letters_once(queue: SqlJobQueue) -> None:
    job = await queue.enqueue("PUBLISH_PRICE_CHANGE", {"entity_id": "L1"})
    start = utc_now()

    await queue.claim_next()
    retried = await queue.mark_failed(job.id, "marketplace 503")
    assert retried.status is JobStatus.PENDING
    assert retried.error_message == "marketplace 503"
    delay = (retried.scheduled_for - start).total_seconds()
    assert 29 <= delay <= 35
    assert await queue.claim_next() is None

    for attempt in (2, 3):
        claimed = await queue.claim_next(utc_now() + timedelta(hours=2))
        assert claimed.attempt == attempt
        result = await queue.mark_failed(job.id, f"failure {attempt}")

    assert result.status is JobStatus.FAILED
    [entry] = await queue.list_dead_letters()
    assert entry.job_id == job.id
    assert entry.attempts_made == 3
    assert entry.error_message == "failure 3"

    again = await queue.mark_failed(job.id, "late duplicate")
    assert again.status is JobStatus.FAILED
    assert len(await queue.list_dead_letters()) == 1


async def test_permanent_failure_skips_retries(queue: SqlJobQueue) -> None:
    job = await queue.enqueue("A", {}, max_attempts=5)
    await queue.claim_next()
    failed = await queue.mark_failed(job.id, "bad payload", permanent=True)
    assert failed.status is JobStatus.FAILED
    assert (await queue.get_dead_letter(job.id)).attempts_made == 1


async def test_succeeded_stores_result_and_ignores_late_failure(queue: SqlJobQueue) -> None:
    job = await queue.enqueue("A", {})
    await queue.claim_next()
    done = await queue.mark_succeeded(job.id, {"ok": True})
    assert done.status is JobStatus.SUCCEEDED
    assert done.result == {"ok": True}
    assert done.completed_at is not None
    late = await queue.mark_failed(job.id, "too late")
    assert late.status is JobStatus.SUCCEEDED


async def test_dedup_returns_active_job(queue: SqlJobQueue) -> None:
    first = await queue.enqueue("COMPUTE_FEATURES", {"entity_id": "L1"}, dedup_key="L1")
    second = await queue.enqueue("COMPUTE_FEATURES", {"entity_id": "L1"}, dedup_key="L1")
    other_type = await queue.enqueue("SYNC_CATALOG", {}, dedup_key="L1")
    assert second.id == first.id
    assert other_type.id != first.id

    await queue.claim(first.id)
    await queue.mark_succeeded(first.id)
    fresh = await queue.enqueue("COMPUTE_FEATURES", {"entity_id": "L1"}, dedup_key="L1")
    assert fresh.id != first.id


async def test_cancel(queue: SqlJobQueue) -> None:
    job = await queue.enqueue("A", {})
    cancelled = await queue.cancel(job.id)
    assert cancelled.status is JobStatus.CANCELLED
    assert await queue.is_cancelled(job.id)
    assert await queue.claim_next() is None
    with pytest.raises(InvalidJobStateException):
        await queue.cancel(job.id)
    with pytest.raises(ResourceNotFoundException):
        await queue.cancel(9999)


async def test_replay_dead_letter(queue: SqlJobQueue) -> None:
    job = await queue.enqueue("A", {"n": 1}, max_attempts=1)
    await queue.claim_next()
    await queue.mark_failed(job.id, "boom")

    replay = await queue.replay_dead_letter(job.id, notes="fixed upstream")
    assert replay.id != job.id
    assert replay.status is JobStatus.PENDING
    assert replay.attempt == 0
    assert replay.payload == {"n": 1}
    assert replay.correlation_id == f"replay:{job.id}"

    entry = await queue.get_dead_letter(job.id)
    assert entry.is_resolved
    assert entry.resolution_notes == "fixed upstream"
    assert entry.metadata == {"replayed_job_id": replay.id}
    assert await queue.list_dead_letters() == []
    assert len(await queue.list_dead_letters(include_resolved=True)) == 1
    with pytest.raises(InvalidJobStateException):
        await queue.replay_dead_letter(job.id)
    with pytest.raises(ResourceNotFoundException):
        await queue.replay_dead_letter(424242)


async def test_reclaim_stale_resets_or_dead_letters(queue: SqlJobQueue) -> None:
    past = utc_now() - timedelta(minutes=10)
    retryable = await queue.enqueue("A", {}, scheduled_for=past)
    exhausted = await queue.enqueue("A", {}, scheduled_for=past, max_attempts=1)
    fresh = await queue.enqueue("A", {})
    await queue.claim(retryable.id, past)
    await queue.claim(exhausted.id, past)
    await queue.claim(fresh.id)

    assert await queue.reclaim_stale(lambda job_type: 60.0, 30.0) == 2

    reset = await queue.get(retryable.id)
    assert reset.status is JobStatus.PENDING
    assert reset.attempt == 1
    assert (await queue.get(exhausted.id)).status is JobStatus.FAILED
    assert (await queue.get_dead_letter(exhausted.id)) is not None
    assert (await queue.get(fresh.id)).status is JobStatus.RUNNING


async def test_list_and_count(queue: SqlJobQueue) -> None:
    a = await queue.enqueue("A", {})
    await queue.enqueue("B", {})
    await queue.cancel(a.id)
    counts = await queue.count_by_status()
    assert counts[JobStatus.PENDING.value] == 1
    assert counts[JobStatus.CANCELLED.value] == 1
    assert [j.job_type for j in await queue.list_jobs(statuses=[JobStatus.PENDING])] == ["B"]
    assert [j.id for j in await queue.list_jobs(job_types=["A"])] == [a.id]


async def test_concurrent_claimers_each_win_a_distinct_job(queue: SqlJobQueue) -> None:
    jobs = [await queue.enqueue("A", {"n": n}) for n in range(3)]
    claims = await asyncio.gather(*(queue.claim_next() for _ in range(8)))
    winners = [c for c in claims if c is not None]
    assert sorted(c.id for c in winners) == sorted(j.id for j in jobs)
    assert all(c.attempt == 1 for c in winners)
    assert await queue.claim_next() is None


async def test_settle_from_superseded_attempt_is_ignored(queue: SqlJobQueue) -> None:
    past = utc_now() - timedelta(minutes=10)
    job = await queue.enqueue("A", {}, scheduled_for=past)
    first = await queue.claim(job.id, past)
    assert await queue.reclaim_stale(lambda job_type: 60.0, 30.0) == 1
    second = await queue.claim_next()
    assert second.attempt == 2

    stale = await queue.mark_succeeded(job.id, {"by": "old"}, attempt=first.attempt)
    assert stale.status is JobStatus.RUNNING
    assert stale.result is None
    stale = await queue.mark_failed(job.id, "old worker timed out", attempt=first.attempt)
    assert stale.status is JobStatus.RUNNING
    assert stale.error_message == "Claim expired (worker lost)"

    done = await queue.mark_succeeded(job.id, {"by": "new"}, attempt=second.attempt)
    assert done.status is JobStatus.SUCCEEDED
    assert done.result == {"by": "new"}


async def test_dead_letter_written_once_after_crash_mid_failure(
    queue: SqlJobQueue, session_factory, monkeypatch
) -> None:
    job = await queue.enqueue("A", {}, max_attempts=1)
    claimed = await queue.claim_next()

    async def crash(self, row, error_message, now):
        raise RuntimeError("connection dropped")

    with monkeypatch.context() as patched:
        patched.setattr(JobRepository, "insert_dead_letter", crash)
        with pytest.raises(RuntimeError):
            await queue.mark_failed(job.id, "boom", attempt=claimed.attempt)

    rolled_back = await queue.get(job.id)
    assert rolled_back.status is JobStatus.RUNNING
    assert await queue.get_dead_letter(job.id) is None

    failed = await queue.mark_failed(job.id, "boom", attempt=claimed.attempt)
    assert failed.status is JobStatus.FAILED
    await queue.mark_failed(job.id, "boom", attempt=claimed.attempt)
    async with session_scope(session_factory) as session:
        assert await JobRepository(session).count_dead_letters(job.id) == 1


async def test_concurrent_enqueues_with_same_dedup_key_share_one_job(queue: SqlJobQueue) -> None:
    first, second = await asyncio.gather(
        queue.enqueue("COMPUTE_FEATURES", {"entity_id": "L1"}, dedup_key="L1"),
        queue.enqueue("COMPUTE_FEATURES", {"entity_id": "L1"}, dedup_key="L1"),
    )
    assert first.id == second.id
    assert len(await queue.list_jobs(job_types=["COMPUTE_FEATURES"])) == 1


async def test_jobs_by_entity_and_appended_log(queue: SqlJobQueue) -> None:
    price = await queue.enqueue("PUBLISH_PRICE_CHANGE", {"entity_id": "L1", "new_price": "9.99"})
    await queue.enqueue("COMPUTE_FEATURES", {"entity_id": "L2"})
    tagged = await queue.enqueue("SYNC_CATALOG", {}, entity_id="L1")

    assert price.entity_id == "L1"
    assert [j.id for j in await queue.list_jobs(entity_id="L1")] == [tagged.id, price.id]

    await queue.append_log(price.id, "submitted", attempt=1, request_id="r-1")
    await queue.append_log(price.id, "acknowledged")
    await queue.append_log(9999, "nobody home")
    first, second = (await queue.get(price.id)).log
    assert first["message"] == "submitted"
    assert first["request_id"] == "r-1"
    assert "timestamp" in first
    assert second["message"] == "acknowledged"
