"""In-process, fire-and-forget event bus with bounded per-subscriber queues."""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from collections.abc import Iterable

from wrench.models.enums import EventKind
from wrench.models.service import RunEvent

logger = logging.getLogger("wrench.events")


class Subscription:
    """A subscriber's view of the bus. Events beyond ``maxsize`` are dropped."""

    def __init__(self, bus: EventBus, kinds: frozenset[EventKind] | None, maxsize: int) -> None:
        self.id = uuid.uuid4().hex
        self.kinds = kinds
        self.dropped = 0
        self._bus = bus
        self._queue: queue.Queue[RunEvent] = queue.Queue(maxsize=maxsize)

    def wants(self, event: RunEvent) -> bool:
        return self.kinds is None or event.kind in self.kinds

    def offer(self, event: RunEvent) -> bool:
        """Enqueue without blocking. Returns False if the event was dropped."""
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            return False
        return True

    def get(self, timeout: float | None = None) -> RunEvent | None:
        """Block for the next event; None on timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self, limit: int | None = None) -> list[RunEvent]:
        events: list[RunEvent] = []
        while limit is None or len(events) < limit:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return events

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class EventBus:
    """Publishers never block: a slow subscriber loses events, the run never stalls."""

    def __init__(self, queue_size: int = 1000) -> None:
        self._queue_size = queue_size
        self._lock = threading.RLock()
        self._subscribers: dict[str, Subscription] = {}

    def subscribe(self, kinds: Iterable[EventKind] | None = None) -> Subscription:
        sub = Subscription(self, frozenset(kinds) if kinds is not None else None, self._queue_size)
        with self._lock:
            self._subscribers[sub.id] = sub
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers.pop(sub.id, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: RunEvent) -> int:
        """Deliver an event to every interested subscriber. Returns the delivered count."""
        with self._lock:
            subscribers = list(self._subscribers.values())
        delivered = 0
        for sub in subscribers:
            if not sub.wants(event):
                continue
            if sub.offer(event):
                delivered += 1
            else:
                logger.debug("Dropped %s event for subscriber %s (queue full)", event.kind, sub.id)
        return delivered
