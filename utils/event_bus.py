"""
Typed asynchronous event bus for stock and alert events.

Delivery order is documented and testable: subscribers are awaited one after another
in subscription order. A failing subscriber is retried (at-least-once delivery) and
then logged; it never blocks delivery to the subscribers after it.
"""

import logging
from collections.abc import Callable, Coroutine
from typing import Any

from models.enums import StockEventType
from models.events import StockEvent

logger_event_bus = logging.getLogger(__name__)

Subscriber = Callable[[StockEvent], Coroutine[Any, Any, None]]


class EventBus:
    """In-order, at-least-once event bus"""

    def __init__(self, delivery_attempts: int = 2):
        if delivery_attempts < 1:
            raise ValueError("delivery_attempts must be at least 1")
        self.delivery_attempts = delivery_attempts
        self.subscribers: dict[StockEventType, list[Subscriber]] = {}

    def subscribe(self, event_type: StockEventType, callback: Subscriber) -> None:
        """Subscribe to an event type."""
        if not callable(callback):
            raise TypeError("Callback must be a callable async function.")
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        if callback not in self.subscribers[event_type]:  # Avoid duplicate subscriptions
            self.subscribers[event_type].append(callback)
            logger_event_bus.debug(f"Callback {_name(callback)} subscribed to {event_type.value}")
        else:
            logger_event_bus.warning(f"Callback {_name(callback)} already subscribed to {event_type.value}")

    def unsubscribe(self, event_type: StockEventType, callback: Subscriber) -> None:
        """Unsubscribe a specific callback from an event type."""
        if event_type in self.subscribers:
            try:
                self.subscribers[event_type].remove(callback)
                logger_event_bus.debug(f"Callback {_name(callback)} unsubscribed from {event_type.value}")
                if not self.subscribers[event_type]:  # Clean up empty list
                    del self.subscribers[event_type]
            except ValueError:
                logger_event_bus.warning(f"Callback {_name(callback)} not found for event type {event_type.value}")

    async def publish(self, event: StockEvent) -> int:
        """Publish an event. Returns how many subscribers handled it."""
        if not isinstance(event, StockEvent):
            logger_event_bus.error(f"Attempted to publish invalid event type: {type(event)}")
            return 0

        logger_event_bus.debug(f"Event published: {event.event_type.value} for {event.item_id}@{event.location_id}")
        handled = 0
        # Snapshot so subscribers may (un)subscribe while handling
        for callback in list(self.subscribers.get(event.event_type, [])):
            if await self._deliver(callback, event):
                handled += 1
        return handled

    async def _deliver(self, callback: Subscriber, event: StockEvent) -> bool:
        for attempt in range(1, self.delivery_attempts + 1):
            try:
                await callback(event)
                return True
            except Exception as e:
                if attempt < self.delivery_attempts:
                    logger_event_bus.warning(
                        f"Subscriber '{_name(callback)}' failed on {event.event_type.value} "
                        f"(attempt {attempt}/{self.delivery_attempts}): {e}"
                    )
                else:
                    logger_event_bus.error(
                        f"Error in subscriber callback '{_name(callback)}' for event {event.event_type.value}: {e}",
                        exc_info=False,
                    )
        return False


def _name(callback: Callable) -> str:
    return getattr(callback, "__name__", repr(callback))
