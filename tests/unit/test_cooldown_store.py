"""Cooldown store, key scheme and advisory lock tests."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from sellerops.domain.exceptions import StoreUnavailableException
from sellerops.infrastructure.cache import EntityLockGuard, InMemoryCooldownStore, RedisCooldownStore
from sellerops.infrastructure.cache.keys import build_key, cooldown_key, last_good_key, lock_key


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_key_scheme_is_domain_name_entity() -> None:
    assert cooldown_key("rule1", "L1") == "cooldown:rule1:L1"
    assert lock_key("feature-recompute", "L1") == "lock:feature-recompute:L1"
    assert last_good_key("feature-recompute", "L1") == "lastgood:feature-recompute:L1"
    assert build_key("cooldown", "r", "a:b") == "cooldown:r:a:b"


@pytest.mark.parametrize(("domain", "name", "entity"), [("", "r", "e"), ("d", "a:b", "e"), ("d", "r", "")])
def test_key_components_validated(domain: str, name: str, entity: str) -> None:
    with pytest.raises(ValueError):
        build_key(domain, name, entity)


async def test_try_acquire_is_exclusive_until_expiry() -> None:
    clock = _Clock()
    store = InMemoryCooldownStore(clock=clock)
    assert await store.try_acquire("cooldown:r:L1", 60) is True
    assert await store.try_acquire("cooldown:r:L1", 60) is False
    assert await store.is_held("cooldown:r:L1") is True
    clock.now += 61
    assert await store.is_held("cooldown:r:L1") is False
    assert await store.try_acquire("cooldown:r:L1", 60) is True


async def test_concurrent_acquire_has_single_winner() -> None:
    store = InMemoryCooldownStore()
    results = await asyncio.gather(*(store.try_acquire("cooldown:r:L1", 60) for _ in range(20)))
    assert results.count(True) == 1


async def test_release_and_values() -> None:
    clock = _Clock()
    store = InMemoryCooldownStore(clock=clock)
    await store.try_acquire("lock:x:1", 60)
    await store.release("lock:x:1")
    assert await store.is_held("lock:x:1") is False
    await store.set_value("lastgood:x:1", {"a": 1}, ttl_seconds=10)
    assert await store.get_value("lastgood:x:1") == {"a": 1}
    clock.now += 11
    assert await store.get_value("lastgood:x:1") is None


async def test_redis_store_uses_set_nx_px() -> None:
    client = AsyncMock()
    client.set = AsyncMock(side_effect=[True, None])
    store = RedisCooldownStore(redis_client=client)
    assert await store.try_acquire("cooldown:r:L1", 2.5) is True
    assert await store.try_acquire("cooldown:r:L1", 2.5) is False
    client.set.assert_awaited_with("cooldown:r:L1", "1", nx=True, px=2500)


async def test_redis_store_without_connection_is_unavailable() -> None:
    store = RedisCooldownStore()
    store.connect = AsyncMock()
    with pytest.raises(StoreUnavailableException):
        await store.is_held("cooldown:r:L1")


async def test_lock_guard_computes_and_caches_last_good() -> None:
    store = InMemoryCooldownStore()
    guard = EntityLockGuard(store, lock_ttl_seconds=30)
    compute = AsyncMock(return_value={"velocity": 3})
    outcome = await guard.run_exclusive("feature-recompute", "L1", compute)
    assert outcome.computed is True
    assert outcome.value == {"velocity": 3}
    assert await store.is_held("lock:feature-recompute:L1") is False
    assert await store.get_value("lastgood:feature-recompute:L1") == {"velocity": 3}


async def test_lock_guard_busy_returns_last_known_good_without_computing() -> None:
    store = InMemoryCooldownStore()
    guard = EntityLockGuard(store, lock_ttl_seconds=30)
    await store.set_value("lastgood:feature-recompute:L1", {"velocity": 1})
    await store.try_acquire("lock:feature-recompute:L1", 30)
    compute = AsyncMock()
    outcome = await guard.run_exclusive("feature-recompute", "L1", compute)
    assert outcome.computed is False
    assert outcome.value == {"velocity": 1}
    compute.assert_not_awaited()


async def test_lock_guard_releases_on_error() -> None:
    store = InMemoryCooldownStore()
    guard = EntityLockGuard(store)
    with pytest.raises(RuntimeError):
        await guard.run_exclusive("feature-recompute", "L1", AsyncMock(side_effect=RuntimeError("x")))
    assert await store.is_held("lock:feature-recompute:L1") is False


async def test_release_after_expiry_keeps_new_holders_lock() -> None:
    clock = _Clock()
    store = InMemoryCooldownStore(clock=clock)
    assert await store.try_acquire("lock:x:1", 30, token="first")
    clock.now += 31
    assert await store.try_acquire("lock:x:1", 30, token="second")
    assert await store.release("lock:x:1", "first") is False
    assert await store.is_held("lock:x:1") is True
    assert await store.release("lock:x:1", "second") is True
    assert await store.is_held("lock:x:1") is False


async def test_lock_guard_outliving_its_ttl_does_not_free_the_next_holder() -> None:
    clock = _Clock()
    store = InMemoryCooldownStore(clock=clock)
    guard = EntityLockGuard(store, lock_ttl_seconds=30)

    async def slow_compute() -> dict:
        clock.now += 31
        assert await store.try_acquire("lock:feature-recompute:L1", 30, token="other-worker")
        return {"velocity": 2}

    outcome = await guard.run_exclusive("feature-recompute", "L1", slow_compute)
    assert outcome.computed is True
    assert await store.is_held("lock:feature-recompute:L1") is True


async def test_redis_release_with_token_is_compare_and_delete() -> None:
    client = AsyncMock()
    client.eval = AsyncMock(side_effect=[1, 0])
    store = RedisCooldownStore(redis_client=client)
    assert await store.release("lock:x:1", "tok") is True
    assert await store.release("lock:x:1", "tok") is False
    script, numkeys, key, token = client.eval.await_args.args
    assert (numkeys, key, token) == (1, "lock:x:1", "tok")
    assert 'redis.call("get", KEYS[1]) == ARGV[1]' in script
    client.delete.assert_not_awaited()


async def test_expired_values_are_pruned_on_write() -> None:
    clock = _Clock()
    store = InMemoryCooldownStore(max_size=2, clock=clock)
    for i in range(3):
        await store.set_value(f"lastgood:x:{i}", i, ttl_seconds=5)
    clock.now += 6
    await store.set_value("lastgood:x:fresh", "new", ttl_seconds=5)
    assert list(store._values) == ["lastgood:x:fresh"]
