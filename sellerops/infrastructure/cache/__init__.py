"""Cooldown/dedup store and entity advisory locks."""

from sellerops.infrastructure.cache.advisory_lock import EntityLockGuard, LockOutcome
from sellerops.infrastructure.cache.cooldown_store import (
    InMemoryCooldownStore,
    RedisCooldownStore,
)

__all__ = [
    "EntityLockGuard",
    "InMemoryCooldownStore",
    "LockOutcome",
    "RedisCooldownStore",
]
