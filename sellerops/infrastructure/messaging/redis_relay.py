"""Redis Pub/Sub relay for bus events published by other processes.

Producers outside the worker process (API, sync jobs) publish BusEvent
JSON to ``sellerops_events:<topic>``; the relay psubscribes and re-publishes
each message on the local EventBus.
"""

from __future__ import annotations

import asyncio
import json
import logging

import redis.asyncio as redis

from sellerops.core.config import Settings, get_settings
from sellerops.core.constants import KEY_SEP, REDIS_EVENT_CHANNEL_PREFIX
from sellerops.infrastructure.messaging.event_bus import BusEvent, EventBus

logger = logging.getLogger(__name__)


def _connect(settings: Settings) -> redis.Redis:
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password.get_secret_value() if settings.redis_password else None,
        decode_responses=True,
        socket_connect_timeout=5,
    )


class RedisEventPublisher:
    """Publishes BusEvents to Redis for relay into worker processes."""

    def __init__(self, redis_client: redis.Redis | None = None, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.redis = redis_client

    async def connect(self) -> None:
        if self.redis is None:
            self.redis = _connect(self.settings)
            await self.redis.ping()

    async def disconnect(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None

    @staticmethod
    def channel_for(topic: str) -> str:
        return f"{REDIS_EVENT_CHANNEL_PREFIX}{KEY_SEP}{topic}"

    async def publish(self, event: BusEvent) -> int:
        """Publish event; returns the number of Redis subscribers that received it."""
        if self.redis is None:
            await self.connect()
        assert self.redis is not None
        return await self.redis.publish(self.channel_for(event.topic), json.dumps(event.to_dict()))


async def run_redis_event_relay(
    bus: EventBus, redis_client: redis.Redis | None = None, settings: Settings | None = None
) -> None:
    """Relay ``sellerops_events:*`` messages into the bus until cancelled.

    Run as a background task; cancelling the task stops the loop.
    """
    client = redis_client or _connect(settings or get_settings())
    pubsub = client.pubsub()
    pattern = f"{REDIS_EVENT_CHANNEL_PREFIX}{KEY_SEP}*"
    try:
        await pubsub.psubscribe(pattern)
        logger.info("Relaying Redis %s into the event bus", pattern)
        async for message in pubsub.listen():
            if message["type"] != "pmessage":
                continue
            try:
                event = BusEvent.from_dict(json.loads(message["data"]))
            except (json.JSONDecodeError, KeyError, TypeError):
                logger.exception("Failed to parse relayed bus event")
                continue
            await bus.publish_event(event)
    except asyncio.CancelledError:
        logger.info("Redis event relay cancelled")
        raise
    finally:
        await pubsub.punsubscribe()
        await pubsub.aclose()
