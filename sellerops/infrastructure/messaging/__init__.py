"""Typed in-process event bus and Redis relay."""

from sellerops.infrastructure.messaging.event_bus import BusEvent, EventBus, Subscription

__all__ = ["BusEvent", "EventBus", "Subscription"]
