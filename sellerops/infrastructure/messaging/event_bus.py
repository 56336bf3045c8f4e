"""In-process typed publish/subscribe.

Each subscription owns a bounded queue and one consumer task, so a
subscriber sees its events one at a time and a slow subscriber applies
backpressure to publishers instead of growing memory. Topic patterns use
shell-style wildcards (``competitor.*``). A handler that raises is logged
and keeps its subscription.
"""

from __future__ import annotations

import asyncio
import fnmatch
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from sellerops.domain.exceptions import StoreUnavailableException
from sellerops.shared.telemetry.logging import get_logger
from sellerops.shared.utils.datetime import utc_now
from sellerops.shared.utils.generators import generate_id

logger = get_logger(__name__)


@dataclass(frozen=True)
class BusEvent:
    """One published event."""

    topic: str
    payload: dict[str, Any] = field(default_factory=dict)
    entity_id: str | None = None
    entity_type: str = "listing"
    event_id: str = field(default_factory=lambda: generate_id("evt"))
    occurred_at: str = field(default_factory=lambda: utc_now().isoformat())

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON publish."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BusEvent:
        """Deserialize from a relayed message."""
        return cls(
            topic=str(data["topic"]),
            payload=dict(data.get("payload") or {}),
            entity_id=data.get("entity_id"),
            entity_type=data.get("entity_type") or "listing",
            event_id=data.get("event_id") or generate_id("evt"),
            occurred_at=data.get("occurred_at") or utc_now().isoformat(),
        )


EventHandler = Callable[[BusEvent], Awaitable[None]]


class Subscription:
    """Handle for one subscriber: its pattern, queue and consumer task."""

    def __init__(
        self,
        bus: EventBus,
        pattern: str,
        handler: EventHandler,
        name: str,
        maxsize: int,
    ) -> None:
        self.bus = bus
        self.pattern = pattern
        self.handler = handler
        self.name = name
        self.queue: asyncio.Queue[BusEvent] = asyncio.Queue(maxsize=maxsize)
        self.delivered = 0
        self.failed = 0
        self._task: asyncio.Task[None] | None = None

    def matches(self, topic: str) -> bool:
        return fnmatch.fnmatchcase(topic, self.pattern)

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def _start(self) -> None:
        self._task = asyncio.create_task(self._consume(), name=f"sub:{self.name}")

    async def _consume(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.handler(event)
                self.delivered += 1
            except Exception:
                self.failed += 1
                logger.exception(
                    "Subscriber %s failed on %s (%s)", self.name, event.topic, event.event_id
                )
            finally:
                self.queue.task_done()

    def detach(self) -> None:
        """Stop matching new events; the consumer keeps handling what is queued."""
        self.bus._remove(self)

    async def unsubscribe(self, drain: bool = False) -> None:
        """Stop receiving events.

        With drain, events already queued (and the one in flight) are handled
        before the consumer stops; otherwise they are dropped.
        """
        self.detach()
        if drain and self.active:
            await self.queue.join()
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None


class EventBus:
    """Topic-based in-process bus. Owned and closed by the runtime."""

    def __init__(self, queue_size: int = 1000) -> None:
        self._queue_size = queue_size
        self._subscriptions: list[Subscription] = []
        self._closed = False

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    def subscribe(
        self, pattern: str, handler: EventHandler, name: str | None = None
    ) -> Subscription:
        """Register handler for topics matching pattern. Needs a running loop."""
        if self._closed:
            raise StoreUnavailableException("event bus", "closed")
        sub = Subscription(self, pattern, handler, name or pattern, self._queue_size)
        sub._start()
        self._subscriptions.append(sub)
        logger.debug("Subscribed %s to %s", sub.name, pattern)
        return sub

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    async def publish(
        self,
        topic: str,
        payload: dict[str, Any] | None = None,
        *,
        entity_id: str | None = None,
        entity_type: str = "listing",
    ) -> int:
        """Publish an event; returns the number of subscriptions it was queued for."""
        return await self.publish_event(
            BusEvent(topic=topic, payload=payload or {}, entity_id=entity_id, entity_type=entity_type)
        )

    async def publish_event(self, event: BusEvent) -> int:
        if self._closed:
            raise StoreUnavailableException("event bus", "closed")
        targets = [s for s in self._subscriptions if s.matches(event.topic)]
        for sub in targets:
            await sub.queue.put(event)
        if not targets:
            logger.debug("No subscribers for %s", event.topic)
        return len(targets)

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        for sub in list(self._subscriptions):
            await sub.queue.join()

    async def close(self, drain: bool = True) -> None:
        """Stop accepting events, optionally drain queues, then stop consumers."""
        self._closed = True
        if drain:
            await self.join()
        for sub in list(self._subscriptions):
            await sub.unsubscribe()
        logger.info("Event bus closed")
