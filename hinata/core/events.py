"""
Explicit observer list for store lifecycle events.

Stores publish after their critical section has finished. A failing
subscriber is logged and never affects the publishing operation.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable

from hinata.models.events import StoreEvent
from hinata.utils.logger import get_logger

logger = get_logger(__name__)

Subscriber = Callable[[StoreEvent], None] | Callable[[StoreEvent], Awaitable[None]]


class EventBus:
    """Fan-out of store events to registered subscribers (sync or async)."""

    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        """Register a callback. Registering the same callback twice is a no-op."""
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: StoreEvent) -> None:
        """Deliver an event to every subscriber in registration order."""
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Event subscriber failed for {}: {}",
                    event.kind,
                    e,
                    extra={"event": event.kind, "error": str(e)},
                )
