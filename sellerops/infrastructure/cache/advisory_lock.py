"""Entity-scoped advisory locks over the cooldown store.

Non-blocking: when another worker already holds the lock, the caller gets
the last-known-good result (possibly stale, possibly None) instead of
waiting or recomputing.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sellerops.application.interfaces.stores import ICooldownStore
from sellerops.infrastructure.cache.keys import last_good_key, lock_key
from sellerops.shared.telemetry.logging import get_logger
from sellerops.shared.utils.generators import generate_id

logger = get_logger(__name__)


@dataclass(frozen=True)
class LockOutcome:
    """Result of run_exclusive. computed=False means value is last-known-good."""

    computed: bool
    value: Any | None


class EntityLockGuard:
    def __init__(
        self,
        store: ICooldownStore,
        lock_ttl_seconds: float = 300.0,
        last_good_ttl_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._lock_ttl = lock_ttl_seconds
        self._last_good_ttl = last_good_ttl_seconds

    async def run_exclusive(
        self,
        lock_name: str,
        entity_id: str,
        compute: Callable[[], Awaitable[Any]],
    ) -> LockOutcome:
        """Run compute under lock:{lock_name}:{entity_id}, or return last-known-good.

        The lock TTL bounds how long a crashed holder can block others. Each
        call holds its own token, so a holder whose TTL lapsed cannot release
        the lock a later caller took over.
        Exceptions from compute propagate after the lock is released.
        """
        key = lock_key(lock_name, entity_id)
        token = generate_id("lock")
        if not await self._store.try_acquire(key, self._lock_ttl, token):
            cached = await self._store.get_value(last_good_key(lock_name, entity_id))
            logger.info(
                "Lock %s busy; returning last-known-good (%s)",
                key,
                "present" if cached is not None else "none",
            )
            return LockOutcome(computed=False, value=cached)
        try:
            value = await compute()
            await self._store.set_value(
                last_good_key(lock_name, entity_id), value, self._last_good_ttl
            )
            return LockOutcome(computed=True, value=value)
        finally:
            await self._store.release(key, token)
