"""Cooldown/dedup store: atomic check-and-set with expiry.

RedisCooldownStore is the shared store (SET NX EX). InMemoryCooldownStore
serves single-process deployments and tests. Both use keys from
sellerops.infrastructure.cache.keys.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as redis

from sellerops.core.config import Settings, get_settings
from sellerops.domain.exceptions import StoreUnavailableException

logger = logging.getLogger(__name__)

_STORE_NAME = "cooldown store"

# Compare-and-delete: a holder whose TTL lapsed must not delete a newer holder's key
_RELEASE_IF_OWNER = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def _ttl_ms(ttl_seconds: float) -> int:
    return max(1, int(ttl_seconds * 1000))


class RedisCooldownStore:
    """Async Redis-backed cooldown and lock store.

    Call connect() at startup and disconnect() at shutdown. Unlike a cache,
    an unreachable store is not silently ignored: every primitive retries
    once after reconnecting, then raises StoreUnavailableException.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            redis_client: Optional Redis client for testing or DI.
            settings: Connection settings; defaults to get_settings().
        """
        self.redis = redis_client
        self.settings = settings or get_settings()
        self._connected = redis_client is not None

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self.redis is not None:
            return
        try:
            self.redis = redis.Redis(
                host=self.settings.redis_host,
                port=self.settings.redis_port,
                db=self.settings.redis_db,
                password=(
                    self.settings.redis_password.get_secret_value()
                    if self.settings.redis_password
                    else None
                ),
                max_connections=self.settings.redis_max_connections,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
            )
            await self.redis.ping()
            self._connected = True
            logger.info(
                "Cooldown store connected: %s:%s",
                self.settings.redis_host,
                self.settings.redis_port,
            )
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.error("Cooldown store connection failed: %s", e)
            self._connected = False
            self.redis = None

    async def disconnect(self) -> None:
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self._connected = False
            logger.info("Cooldown store disconnected")

    async def _reconnect(self) -> bool:
        """Attempt to reconnect after a dropped connection."""
        if self.redis is not None:
            try:
                await self.redis.aclose()
            except redis.RedisError:
                logger.debug("Ignoring close error during reconnect")
        self.redis = None
        self._connected = False
        await self.connect()
        return self._connected

    def is_available(self) -> bool:
        return self._connected and self.redis is not None

    async def _call[T](self, op: str, fn: Callable[[redis.Redis], Awaitable[T]]) -> T:
        if self.redis is None and not await self._reconnect():
            raise StoreUnavailableException(_STORE_NAME, "not connected")
        assert self.redis is not None
        try:
            return await fn(self.redis)
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning("Cooldown store %s failed (%s); reconnecting", op, e)
            if await self._reconnect():
                assert self.redis is not None
                try:
                    return await fn(self.redis)
                except redis.RedisError as retry_error:
                    raise StoreUnavailableException(_STORE_NAME, str(retry_error)) from retry_error
            raise StoreUnavailableException(_STORE_NAME, str(e)) from e
        except redis.RedisError as e:
            logger.exception("Cooldown store %s error", op)
            raise StoreUnavailableException(_STORE_NAME, str(e)) from e

    async def try_acquire(self, key: str, ttl_seconds: float, token: str = "1") -> bool:
        acquired = await self._call(
            "try_acquire", lambda r: r.set(key, token, nx=True, px=_ttl_ms(ttl_seconds))
        )
        logger.debug("Cooldown %s: %s", "ACQUIRED" if acquired else "HELD", key)
        return bool(acquired)

    async def release(self, key: str, token: str | None = None) -> bool:
        """Delete key; with a token, only while it still holds that token."""
        if token is None:
            return bool(await self._call("release", lambda r: r.delete(key)))
        deleted = await self._call(
            "release", lambda r: r.eval(_RELEASE_IF_OWNER, 1, key, token)
        )
        if not deleted:
            logger.warning("Lock %s expired or taken over before release", key)
        return bool(deleted)

    async def is_held(self, key: str) -> bool:
        return bool(await self._call("is_held", lambda r: r.exists(key)))

    async def get_value(self, key: str) -> Any | None:
        raw = await self._call("get_value", lambda r: r.get(key))
        return json.loads(raw) if raw is not None else None

    async def set_value(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        serialized = json.dumps(value, default=str)
        if ttl_seconds:
            await self._call(
                "set_value", lambda r: r.set(key, serialized, px=_ttl_ms(ttl_seconds))
            )
        else:
            await self._call("set_value", lambda r: r.set(key, serialized))


class InMemoryCooldownStore:
    """Process-local cooldown store with expiry.

    Keys expire lazily on access; once either map grows past max_size an
    opportunistic sweep drops expired entries.
    """

    def __init__(
        self,
        max_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_size = max_size
        self._clock = clock
        self._held: dict[str, tuple[float, str]] = {}
        self._values: dict[str, tuple[Any, float | None]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str, now: float) -> bool:
        entry = self._held.get(key)
        if entry is None:
            return False
        if entry[0] <= now:
            self._held.pop(key, None)
            return False
        return True

    def _sweep(self, now: float) -> None:
        if len(self._held) > self.max_size:
            for key, (exp, _) in list(self._held.items()):
                if exp <= now:
                    self._held.pop(key, None)
        if len(self._values) > self.max_size:
            for key, (_, exp) in list(self._values.items()):
                if exp is not None and exp <= now:
                    self._values.pop(key, None)

    async def try_acquire(self, key: str, ttl_seconds: float, token: str = "1") -> bool:
        async with self._lock:
            now = self._clock()
            if self._live(key, now):
                return False
            self._sweep(now)
            self._held[key] = (now + ttl_seconds, token)
            return True

    async def release(self, key: str, token: str | None = None) -> bool:
        async with self._lock:
            entry = self._held.get(key)
            if entry is None:
                return False
            if token is not None and (entry[1] != token or not self._live(key, self._clock())):
                logger.warning("Lock %s expired or taken over before release", key)
                return False
            del self._held[key]
            return True

    async def is_held(self, key: str) -> bool:
        async with self._lock:
            return self._live(key, self._clock())

    async def get_value(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._values.get(key)
            if entry is None:
                return None
            value, exp = entry
            if exp is not None and exp <= self._clock():
                self._values.pop(key, None)
                return None
            return value

    async def set_value(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        async with self._lock:
            now = self._clock()
            self._sweep(now)
            self._values[key] = (value, now + ttl_seconds if ttl_seconds else None)
