"""Tests for notehunt.events.dispatcher: ordering, snapshots, failure isolation."""

from __future__ import annotations

import threading
from dataclasses import dataclass

import pytest

from notehunt.events.dispatcher import Dispatcher, DispatcherClosedError
from notehunt.events.models import Event


@dataclass(frozen=True)
class Ping(Event):
    n: int


@dataclass(frozen=True)
class LoudPing(Ping):
    pass


@dataclass(frozen=True)
class Tagged(Event):
    producer: int
    seq: int


class TestDelivery:
    def test_handlers_run_in_publish_order(self, dispatcher: Dispatcher) -> None:
        seen: list[int] = []
        dispatcher.subscribe(Ping, lambda e: seen.append(e.n))
        for i in range(100):
            dispatcher.publish(Ping(i))
        assert dispatcher.flush(timeout=5)
        assert seen == list(range(100))

    def test_handlers_run_in_registration_order(self, dispatcher: Dispatcher) -> None:
        calls: list[str] = []
        dispatcher.subscribe(Ping, lambda e: calls.append("first"))
        dispatcher.subscribe(Ping, lambda e: calls.append("second"))
        dispatcher.publish(Ping(1))
        assert dispatcher.flush(timeout=5)
        assert calls == ["first", "second"]

    def test_base_class_subscription_matches_subclass(self, dispatcher: Dispatcher) -> None:
        seen: list[str] = []
        dispatcher.subscribe(Event, lambda e: seen.append(type(e).__name__))
        dispatcher.subscribe(Ping, lambda e: seen.append("ping"))
        dispatcher.publish(LoudPing(1))
        assert dispatcher.flush(timeout=5)
        assert sorted(seen) == ["LoudPing", "ping"]

    def test_unrelated_types_not_delivered(self, dispatcher: Dispatcher) -> None:
        seen: list[object] = []
        dispatcher.subscribe(LoudPing, seen.append)
        dispatcher.publish(Ping(1))
        assert dispatcher.flush(timeout=5)
        assert seen == []

    def test_handlers_run_on_dispatch_thread(self, dispatcher: Dispatcher) -> None:
        flags: list[bool] = []
        dispatcher.subscribe(Ping, lambda e: flags.append(dispatcher.is_dispatch_thread()))
        dispatcher.publish(Ping(1))
        assert dispatcher.flush(timeout=5)
        assert flags == [True]
        assert not dispatcher.is_dispatch_thread()

    def test_per_producer_order_with_many_threads(self, dispatcher: Dispatcher) -> None:
        seen: list[Tagged] = []
        dispatcher.subscribe(Tagged, seen.append)
        start = threading.Barrier(4)

        def produce(producer: int) -> None:
            start.wait()
            for seq in range(200):
                dispatcher.publish(Tagged(producer, seq))

        threads = [threading.Thread(target=produce, args=(p,)) for p in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert dispatcher.flush(timeout=5)

        assert len(seen) == 800
        for producer in range(4):
            assert [e.seq for e in seen if e.producer == producer] == list(range(200))

    def test_handlers_never_overlap(self, dispatcher: Dispatcher) -> None:
        active = 0
        overlaps: list[int] = []
        lock = threading.Lock()

        def handler(event: Tagged) -> None:
            nonlocal active
            with lock:
                active += 1
                if active > 1:
                    overlaps.append(active)
            with lock:
                active -= 1

        dispatcher.subscribe(Tagged, handler)
        threads = [
            threading.Thread(
                target=lambda p=p: [dispatcher.publish(Tagged(p, s)) for s in range(50)]
            )
            for p in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert dispatcher.flush(timeout=5)
        assert overlaps == []


class TestSnapshot:
    def test_late_subscriber_misses_earlier_events(self) -> None:
        d = Dispatcher()
        early: list[int] = []
        late: list[int] = []
        d.subscribe(Ping, lambda e: early.append(e.n))
        d.publish(Ping(1))
        d.subscribe(Ping, lambda e: late.append(e.n))
        d.publish(Ping(2))
        d.start()
        try:
            assert d.flush(timeout=5)
        finally:
            d.stop()
        assert early == [1, 2]
        assert late == [2]

    def test_events_published_before_start_are_delivered(self) -> None:
        d = Dispatcher()
        seen: list[int] = []
        d.subscribe(Ping, lambda e: seen.append(e.n))
        d.publish(Ping(1))
        d.publish(Ping(2))
        with d:
            assert d.flush(timeout=5)
        assert seen == [1, 2]


class TestFailureIsolation:
    def test_failing_handler_does_not_stop_delivery(
        self, dispatcher: Dispatcher, caplog: pytest.LogCaptureFixture
    ) -> None:
        seen: list[int] = []

        def boom(event: Ping) -> None:
            if event.n == 1:
                raise ValueError("bad event")

        dispatcher.subscribe(Ping, boom)
        dispatcher.subscribe(Ping, lambda e: seen.append(e.n))
        for i in range(3):
            dispatcher.publish(Ping(i))
        assert dispatcher.flush(timeout=5)

        assert seen == [0, 1, 2]
        assert "failed on Ping" in caplog.text
        assert "bad event" in caplog.text


class TestLifecycle:
    def test_publish_after_stop_raises(self) -> None:
        d = Dispatcher()
        d.start()
        d.stop()
        with pytest.raises(DispatcherClosedError):
            d.publish(Ping(1))
        assert not d.running

    def test_stop_drains_queue(self) -> None:
        d = Dispatcher()
        seen: list[int] = []
        gate = threading.Event()

        def slow(event: Ping) -> None:
            gate.wait(5)
            seen.append(event.n)

        d.subscribe(Ping, slow)
        d.start()
        for i in range(5):
            d.publish(Ping(i))
        gate.set()
        d.stop(timeout=5)
        assert seen == [0, 1, 2, 3, 4]

    def test_stop_is_idempotent(self) -> None:
        d = Dispatcher()
        d.start()
        d.stop()
        d.stop()

    def test_start_after_stop_raises(self) -> None:
        d = Dispatcher()
        d.stop()
        with pytest.raises(DispatcherClosedError):
            d.start()

    def test_flush_times_out_behind_blocked_handler(self, dispatcher: Dispatcher) -> None:
        gate = threading.Event()
        dispatcher.subscribe(Ping, lambda e: gate.wait(5))
        dispatcher.publish(Ping(1))
        try:
            assert dispatcher.flush(timeout=0.1) is False
        finally:
            gate.set()
        assert dispatcher.flush(timeout=5)

    def test_flush_from_dispatch_thread_raises(self, dispatcher: Dispatcher) -> None:
        errors: list[BaseException] = []

        def handler(event: Ping) -> None:
            try:
                dispatcher.flush(timeout=1)
            except RuntimeError as exc:
                errors.append(exc)

        dispatcher.subscribe(Ping, handler)
        dispatcher.publish(Ping(1))
        assert dispatcher.flush(timeout=5)
        assert len(errors) == 1
        assert "deadlock" in str(errors[0])
