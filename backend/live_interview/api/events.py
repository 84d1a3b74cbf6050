from __future__ import annotations

import asyncio
import logging

from live_interview.core.config import EVENT_QUEUE_MAX
from live_interview.system_metrics import increment_metric

logger = logging.getLogger("live_interview.api.events")


class EventSubscription:
    def __init__(self, channel: "EventChannel", max_queue: int):
        self._channel = channel
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, int(max_queue)))
        self.dropped = 0

    def offer(self, message: dict | None) -> None:
        if self.queue.full():
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self.dropped += 1
            increment_metric("ws_events_dropped")
            logger.warning(
                "Subscriber queue full; dropped oldest event | session_id=%s dropped=%s",
                self._channel.session_id,
                self.dropped,
            )
        self.queue.put_nowait(message)

    async def get(self) -> dict | None:
        """Next message, or None once the subscription is closed."""
        return await self.queue.get()

    def close(self) -> None:
        self._channel.unsubscribe(self)


class EventChannel:
    """Per-session fan-out of core-to-client messages.

    Each subscriber gets its own bounded queue, so a slow socket never
    blocks the session; on overflow the oldest queued message is dropped.
    """

    def __init__(self, session_id: str, max_queue: int = EVENT_QUEUE_MAX):
        self.session_id = session_id
        self.max_queue = max_queue
        self._subscribers: list[EventSubscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> EventSubscription:
        subscription = EventSubscription(self, self.max_queue)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: EventSubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            subscription.offer(None)

    def publish(self, message: dict) -> None:
        for subscription in list(self._subscribers):
            subscription.offer(message)

    def close(self) -> None:
        for subscription in list(self._subscribers):
            self.unsubscribe(subscription)
