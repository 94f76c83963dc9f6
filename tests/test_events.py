"""Tests for the event bus."""

import threading

from wrench.core.events import EventBus
from wrench.models import EventKind, RunEvent


def _event(kind=EventKind.SERVICE_PROGRESS, n=0):
    return RunEvent(kind=kind, run_id="r1", service_id="svc", payload={"n": n})


class TestEventBus:
    def test_publish_without_subscribers(self):
        assert EventBus().publish(_event()) == 0

    def test_fan_out(self):
        bus = EventBus()
        a, b = bus.subscribe(), bus.subscribe()
        assert bus.publish(_event()) == 2
        assert a.get(timeout=1).payload == {"n": 0}
        assert b.get(timeout=1).payload == {"n": 0}

    def test_kind_filter(self):
        bus = EventBus()
        sub = bus.subscribe([EventKind.RUN_STATUS])
        bus.publish(_event(EventKind.SERVICE_PROGRESS))
        bus.publish(_event(EventKind.RUN_STATUS))
        events = sub.drain()
        assert [e.kind for e in events] == [EventKind.RUN_STATUS]

    def test_order_preserved(self):
        bus = EventBus()
        sub = bus.subscribe()
        for n in range(5):
            bus.publish(_event(n=n))
        assert [e.payload["n"] for e in sub.drain()] == [0, 1, 2, 3, 4]

    def test_full_queue_drops_without_blocking(self):
        bus = EventBus(queue_size=2)
        sub = bus.subscribe()
        delivered = [bus.publish(_event(n=n)) for n in range(5)]
        assert delivered == [1, 1, 0, 0, 0]
        assert sub.dropped == 3
        assert [e.payload["n"] for e in sub.drain()] == [0, 1]

    def test_slow_subscriber_does_not_starve_others(self):
        bus = EventBus(queue_size=1)
        slow, fast = bus.subscribe(), bus.subscribe()
        bus.publish(_event(n=1))
        fast.drain()
        assert bus.publish(_event(n=2)) == 1
        assert fast.get(timeout=1).payload["n"] == 2
        assert slow.dropped == 1

    def test_get_timeout_returns_none(self):
        assert EventBus().subscribe().get(timeout=0.01) is None

    def test_drain_limit(self):
        bus = EventBus()
        sub = bus.subscribe()
        for n in range(5):
            bus.publish(_event(n=n))
        assert len(sub.drain(limit=2)) == 2
        assert len(sub.drain()) == 3

    def test_unsubscribe(self):
        bus = EventBus()
        with bus.subscribe() as sub:
            assert bus.subscriber_count == 1
        assert bus.subscriber_count == 0
        bus.publish(_event())
        assert sub.drain() == []

    def test_concurrent_publishers(self):
        bus = EventBus(queue_size=10_000)
        sub = bus.subscribe()

        def publish_many():
            for n in range(200):
                bus.publish(_event(n=n))

        threads = [threading.Thread(target=publish_many) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(sub.drain()) == 800
