"""Typed in-memory publish/subscribe for registry change notifications.

One ``Broker`` exists per entity kind (department, member, task). Each
subscriber owns a bounded queue; publishing never blocks, so a slow consumer
loses events instead of stalling the registry. There is no replay: a
subscriber sees only what is published after it subscribed.
"""

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Generic, List, Optional, TypeVar

from workforce.models import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class EventType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class Event(Generic[T]):
    type: EventType
    payload: T
    timestamp: datetime = field(default_factory=utcnow)


class Subscription(Generic[T]):
    """A subscriber's view of a broker.

    Iterate with ``async for``; iteration ends once the subscription is
    closed and its buffered events are drained.
    """

    def __init__(self, broker: "Broker[T]", subscription_id: str, maxsize: int) -> None:
        self.id = subscription_id
        self.dropped = 0
        self._broker = broker
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def closed(self) -> bool:
        return self._closed

    def _dispatch(self, callback, *args) -> bool:
        loop = self._loop
        if loop is not None and loop.is_running():
            try:
                current = asyncio.get_running_loop()
            except RuntimeError:
                current = None
            if current is not loop:
                loop.call_soon_threadsafe(callback, *args)
                return True
        return callback(*args)

    def _offer(self, event: Event[T]) -> bool:
        return self._dispatch(self._put, event)

    def _put(self, event: Event[T]) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Event dropped: broker=%s subscription=%s type=%s dropped_total=%d",
                self._broker.name, self.id, event.type.value, self.dropped,
            )
            return False
        return True

    def _close(self) -> None:
        self._dispatch(self._mark_closed)

    def _mark_closed(self) -> bool:
        if self._closed:
            return False
        self._closed = True
        if self._queue.full():
            # Oldest event gives way so blocked readers always see the sentinel.
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(_CLOSED)
        return True

    async def get(self, timeout: Optional[float] = None) -> Optional[Event[T]]:
        """Next event, or None once closed. Raises asyncio.TimeoutError on timeout."""
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def drain(self) -> List[Event[T]]:
        """Everything buffered right now, without waiting."""
        events: List[Event[T]] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)
        return events

    def close(self) -> None:
        self._broker.unsubscribe(self.id)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> Event[T]:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class Broker(Generic[T]):
    """Fan-out of one entity kind's change events."""

    def __init__(self, name: str, buffer_size: int = 64) -> None:
        self.name = name
        self._buffer_size = buffer_size
        self._subscribers: Dict[str, Subscription[T]] = {}
        self._lock = threading.Lock()
        self._shutdown = False

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> Subscription[T]:
        sub_id = uuid.uuid4().hex[:12]
        subscription: Subscription[T] = Subscription(self, sub_id, self._buffer_size)
        with self._lock:
            if self._shutdown:
                subscription._close()
                return subscription
            self._subscribers[sub_id] = subscription
        logger.debug("Subscribed: broker=%s subscription=%s", self.name, sub_id)
        return subscription

    def unsubscribe(self, subscription_id: str) -> None:
        with self._lock:
            subscription = self._subscribers.pop(subscription_id, None)
        if subscription is not None:
            subscription._close()
            logger.debug("Unsubscribed: broker=%s subscription=%s", self.name, subscription_id)

    def publish(self, event_type: EventType, payload: T) -> int:
        """Deliver to every current subscriber; returns how many accepted it."""
        event = Event(type=event_type, payload=payload)
        with self._lock:
            if self._shutdown:
                return 0
            subscribers = list(self._subscribers.values())
        delivered = 0
        for subscription in subscribers:
            if subscription._offer(event):
                delivered += 1
        return delivered

    def shutdown(self) -> None:
        with self._lock:
            self._shutdown = True
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for subscription in subscribers:
            subscription._close()
        logger.debug("Broker shut down: broker=%s subscribers=%d", self.name, len(subscribers))
