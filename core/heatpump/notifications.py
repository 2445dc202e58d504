"""Fire-and-forget notification bus for connected clients."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, dict[str, Any]], Awaitable[None]]


class NotificationBus:
    """Fans published events out to async subscribers without waiting."""

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, subscriber: Subscriber):
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber):
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def publish(self, event: str, payload: dict[str, Any]):
        """Deliver an event to every subscriber in the background."""
        loop = asyncio.get_running_loop()
        for subscriber in list(self._subscribers):
            task = loop.create_task(self._deliver(subscriber, event, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self):
        """Wait for in-flight deliveries."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, subscriber: Subscriber, event: str, payload: dict[str, Any]):
        try:
            await subscriber(event, payload)
        except Exception as e:
            logger.warning(f"Failed to deliver {event} to subscriber: {e}")
