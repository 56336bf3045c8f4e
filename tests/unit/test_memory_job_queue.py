"""In-memory job queue tests: claim, retry scheduling, dead letters, dedup, cancel."""

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

from sellerops.domain.exceptions import InvalidJobStateException, ResourceNotFoundException
from sellerops.infrastructure.jobs import InMemoryJobQueue
from sellerops.shared.enums import JobStatus
from sellerops.shared.utils.datetime import utc_now


async def test_enqueue_starts_pending_with_zero_attempts(job_queue: InMemoryJobQueue) -> None:
    job = await job_queue.enqueue("COMPUTE_FEATURES", {"entity_id": "L1"}, max_attempts=3)
    assert job.status is JobStatus.PENDING
    assert job.attempt == 0
    assert job.max_attempts == 3


async def test_two_claimers_race_for_single_job(job_queue: InMemoryJobQueue) -> None:
    """Exactly one claimer wins; the other sees nothing claimable."""
    job = await job_queue.enqueue("COMPUTE_FEATURES", {"entity_id": "L1"})
    first, second = await asyncio.gather(job_queue.claim_next(), job_queue.claim_next())
    winners = [c for c in (first, second) if c is not None]
    assert len(winners) == 1
    assert winners[0].id == job.id
    assert winners[0].status is JobStatus.RUNNING
    assert winners[0].attempt == 1


async def test_claim_order_is_oldest_due_first(job_queue: InMemoryJobQueue) -> None:
    later = await job_queue.enqueue("A", {}, scheduled_for=utc_now() + timedelta(hours=1))
    first = await job_queue.enqueue("A", {})
    second = await job_queue.enqueue("A", {})
    assert (await job_queue.claim_next()).id == first.id
    assert (await job_queue.claim_next()).id == second.id
    assert await job_queue.claim_next() is None
    assert (await job_queue.claim_next(now=utc_now() + timedelta(hours=2))).id == later.id


async def test_failed_attempt_reschedules_with_backoff(job_queue: InMemoryJobQueue) -> None:
    await job_queue.enqueue("A", {}, max_attempts=3)
    claimed = await job_queue.claim_next()
    before = utc_now()
    failed = await job_queue.mark_failed(claimed.id, "boom")
    assert failed.status is JobStatus.PENDING
    assert failed.error_message == "boom"
    assert failed.scheduled_for >= before + timedelta(seconds=30)
    assert await job_queue.claim_next() is None


async def test_exhausted_job_dead_letters_exactly_once(job_queue: InMemoryJobQueue) -> None:
    job = await job_queue.enqueue("A", {"x": 1}, max_attempts=2)
    for _ in range(2):
        claimed = await job_queue.claim(job.id, now=utc_now() + timedelta(days=1))
        assert claimed is not None
        result = await job_queue.mark_failed(claimed.id, "boom")
    assert result.status is JobStatus.FAILED
    assert result.attempt == 2
    # A repeated failure report after the terminal transition is ignored.
    await job_queue.mark_failed(job.id, "boom again")
    entries = await job_queue.list_dead_letters()
    assert len(entries) == 1
    assert entries[0].job_id == job.id
    assert entries[0].attempts_made == 2
    assert entries[0].error_message == "boom"


async def test_permanent_failure_skips_remaining_attempts(job_queue: InMemoryJobQueue) -> None:
    job = await job_queue.enqueue("A", {}, max_attempts=5)
    await job_queue.claim_next()
    result = await job_queue.mark_failed(job.id, "bad payload", permanent=True)
    assert result.status is JobStatus.FAILED
    assert (await job_queue.get_dead_letter(job.id)).attempts_made == 1


async def test_dedup_key_returns_live_job(job_queue: InMemoryJobQueue) -> None:
    first = await job_queue.enqueue("COMPUTE_FEATURES", {"entity_id": "L1"}, dedup_key="L1")
    again = await job_queue.enqueue("COMPUTE_FEATURES", {"entity_id": "L1"}, dedup_key="L1")
    other_type = await job_queue.enqueue("SYNC_CATALOG", {}, dedup_key="L1")
    assert again.id == first.id
    assert other_type.id != first.id
    await job_queue.claim(first.id)
    await job_queue.mark_succeeded(first.id, {"ok": True})
    fresh = await job_queue.enqueue("COMPUTE_FEATURES", {"entity_id": "L1"}, dedup_key="L1")
    assert fresh.id != first.id


async def test_cancel_rules(job_queue: InMemoryJobQueue) -> None:
    job = await job_queue.enqueue("A", {})
    cancelled = await job_queue.cancel(job.id)
    assert cancelled.status is JobStatus.CANCELLED
    assert await job_queue.is_cancelled(job.id)
    with pytest.raises(InvalidJobStateException):
        await job_queue.cancel(job.id)
    with pytest.raises(ResourceNotFoundException):
        await job_queue.cancel(999)


async def test_late_success_after_cancel_is_dropped(job_queue: InMemoryJobQueue) -> None:
    job = await job_queue.enqueue("A", {})
    await job_queue.claim_next()
    await job_queue.cancel(job.id)
    result = await job_queue.mark_succeeded(job.id, {"late": True})
    assert result.status is JobStatus.CANCELLED
    assert result.result is None


async def test_replay_dead_letter_enqueues_copy_and_resolves(job_queue: InMemoryJobQueue) -> None:
    job = await job_queue.enqueue("A", {"x": 1}, max_attempts=1)
    await job_queue.claim_next()
    await job_queue.mark_failed(job.id, "boom")
    replay = await job_queue.replay_dead_letter(job.id, notes="fixed upstream")
    assert replay.id != job.id
    assert replay.payload == {"x": 1}
    assert replay.status is JobStatus.PENDING
    entry = await job_queue.get_dead_letter(job.id)
    assert entry.is_resolved
    assert entry.metadata == {"replayed_job_id": replay.id}
    assert await job_queue.list_dead_letters() == []
    with pytest.raises(InvalidJobStateException):
        await job_queue.replay_dead_letter(job.id)


async def test_stale_running_job_is_reclaimed_or_dead_lettered(job_queue: InMemoryJobQueue) -> None:
    retryable = await job_queue.enqueue("A", {}, max_attempts=3)
    final = await job_queue.enqueue("A", {}, max_attempts=1)
    await job_queue.claim_next()
    await job_queue.claim_next()
    long_ago = utc_now() - timedelta(hours=1)
    for job_id in (retryable.id, final.id):
        job_queue._jobs[job_id] = replace(job_queue._jobs[job_id], started_at=long_ago)

    reclaimed = await job_queue.reclaim_stale(lambda job_type: 60.0, grace_seconds=60.0)

    assert reclaimed == 2
    assert (await job_queue.get(retryable.id)).status is JobStatus.PENDING
    assert (await job_queue.get(final.id)).status is JobStatus.FAILED
    assert [d.job_id for d in await job_queue.list_dead_letters()] == [final.id]


async def test_counts_and_listing(job_queue: InMemoryJobQueue) -> None:
    a = await job_queue.enqueue("A", {})
    await job_queue.enqueue("B", {})
    await job_queue.cancel(a.id)
    counts = await job_queue.count_by_status()
    assert counts["PENDING"] == 1
    assert counts["CANCELLED"] == 1
    assert counts["SUCCEEDED"] == 0
    listed = await job_queue.list_jobs(statuses=[JobStatus.PENDING])
    assert [j.job_type for j in listed] == ["B"]


async def test_concurrent_replays_enqueue_one_copy(job_queue: InMemoryJobQueue) -> None:
    job = await job_queue.enqueue("A", {"x": 1}, max_attempts=1)
    await job_queue.claim_next()
    await job_queue.mark_failed(job.id, "boom")

    outcomes = await asyncio.gather(
        job_queue.replay_dead_letter(job.id),
        job_queue.replay_dead_letter(job.id),
        return_exceptions=True,
    )

    replays = [o for o in outcomes if not isinstance(o, Exception)]
    errors = [o for o in outcomes if isinstance(o, Exception)]
    assert len(replays) == 1
    assert [type(e) for e in errors] == [InvalidJobStateException]
    assert len(await job_queue.list_jobs(job_types=["A"])) == 2


async def test_settle_from_superseded_attempt_is_ignored(job_queue: InMemoryJobQueue) -> None:
    job = await job_queue.enqueue("A", {})
    first = await job_queue.claim_next()
    job_queue._jobs[job.id] = replace(first, started_at=utc_now() - timedelta(hours=1))
    assert await job_queue.reclaim_stale(lambda job_type: 60.0, grace_seconds=0.0) == 1
    second = await job_queue.claim_next()
    assert second.attempt == 2

    stale = await job_queue.mark_failed(job.id, "old worker timed out", attempt=first.attempt)
    assert stale.status is JobStatus.RUNNING
    assert stale.attempt == 2
    stale = await job_queue.mark_succeeded(job.id, {"by": "old"}, attempt=first.attempt)
    assert stale.result is None

    done = await job_queue.mark_succeeded(job.id, {"by": "new"}, attempt=second.attempt)
    assert done.status is JobStatus.SUCCEEDED
    assert done.result == {"by": "new"}


async def test_jobs_by_entity_and_appended_log(job_queue: InMemoryJobQueue) -> None:
    price = await job_queue.enqueue("PUBLISH_PRICE_CHANGE", {"entity_id": "L1"})
    await job_queue.enqueue("COMPUTE_FEATURES", {"entity_id": "L2"})
    explicit = await job_queue.enqueue("SYNC_CATALOG", {}, entity_id="L1")
    assert [j.id for j in await job_queue.list_jobs(entity_id="L1")] == [explicit.id, price.id]

    await job_queue.append_log(price.id, "submitted", attempt=1)
    [entry] = (await job_queue.get(price.id)).log
    assert entry["message"] == "submitted"
    assert entry["attempt"] == 1
    assert "timestamp" in entry
