"""Per-thread event fan-out for progress and audit subscribers.

Each subscription owns an ``asyncio.Queue`` bound to the loop it was created
on. Publishing is thread-safe: events are delivered with
``call_soon_threadsafe`` onto the subscriber's loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Queued by close() to wake a consumer blocked on an empty queue
_CLOSED = object()


class EventTopic(str, Enum):
    progress = "progress"
    audit = "audit"


class Subscription:
    """A live feed of events for one topic on one thread.

    Registered as soon as it is created, so nothing published afterwards is
    missed. Use as an async iterator or call ``get()``; ``close()`` detaches
    and ends any iteration in progress. Breaking out of ``async for`` does
    not detach, so iterate under ``async with`` to close on exit.
    """

    def __init__(self, bus: "EventBus", topic: EventTopic, thread_id: str) -> None:
        self.topic = topic
        self.thread_id = thread_id
        self._bus = bus
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _deliver(self, event: Any) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def get(self) -> Any:
        event = await self._queue.get()
        if event is _CLOSED:
            raise RuntimeError(f"Subscription to {self.topic.value} on {self.thread_id} is closed")
        return event

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus._remove(self)
            if not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self._queue.put_nowait, _CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Any:
        if self.closed:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is _CLOSED:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class EventBus:
    """Routes published events to the subscriptions of a (topic, thread)."""

    def __init__(self) -> None:
        self._subscribers: dict[tuple[EventTopic, str], list[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: EventTopic, thread_id: str) -> Subscription:
        subscription = Subscription(self, topic, thread_id)
        with self._lock:
            self._subscribers.setdefault((topic, thread_id), []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        key = (subscription.topic, subscription.thread_id)
        with self._lock:
            subscribers = self._subscribers.get(key, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(key, None)

    def publish(self, topic: EventTopic, thread_id: str, event: Any) -> int:
        """Deliver ``event`` to every current subscriber. Returns the count."""
        with self._lock:
            subscribers = list(self._subscribers.get((topic, thread_id), []))
        delivered = 0
        for subscription in subscribers:
            try:
                subscription._deliver(event)
                delivered += 1
            except RuntimeError:
                # Subscriber's loop is closed
                subscription.close()
        return delivered

    def subscriber_count(self, topic: EventTopic, thread_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get((topic, thread_id), []))

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()
