"""Tests for notehunt.events.bridge: request/reply through the dispatcher."""

from __future__ import annotations

import concurrent.futures
import threading
from typing import TYPE_CHECKING

import pytest

from notehunt.events.bridge import (
    BridgeCancelledError,
    BridgeError,
    BridgeTimeoutError,
    answer_request,
    request_last_crawl,
    request_pending_files,
    request_status_counts,
)
from notehunt.events.dispatcher import Dispatcher
from notehunt.events.models import FilesCompleted, PendingFilesRequested
from notehunt.sync.models import FileStatus, Observation
from notehunt.sync.store import register_store_handlers

if TYPE_CHECKING:
    from pathlib import Path

    from notehunt.sync.store import FileStateStore


class TestAnswerRequest:
    def test_sets_result(self) -> None:
        reply: concurrent.futures.Future[int] = concurrent.futures.Future()
        answer_request(reply, lambda: 42)
        assert reply.result(timeout=0) == 42

    def test_sets_exception(self) -> None:
        reply: concurrent.futures.Future[int] = concurrent.futures.Future()

        def fail() -> int:
            raise OSError("disk gone")

        answer_request(reply, fail)
        with pytest.raises(OSError, match="disk gone"):
            reply.result(timeout=0)

    def test_skips_cancelled_request(self) -> None:
        reply: concurrent.futures.Future[int] = concurrent.futures.Future()
        reply.cancel()
        called: list[bool] = []
        answer_request(reply, lambda: called.append(True) or 1)
        assert called == []


class TestRequestPendingFiles:
    def test_returns_store_records(
        self, store: FileStateStore, dispatcher: Dispatcher, tmp_path: Path
    ) -> None:
        register_store_handlers(dispatcher, store)
        store.merge(Observation.success(str(tmp_path / "b.md"), 1))
        store.merge(Observation.success(str(tmp_path / "a.md"), 1))

        records = request_pending_files(dispatcher, timeout=5)

        assert [r.path for r in records] == [str(tmp_path / "a.md"), str(tmp_path / "b.md")]
        assert all(r.status is FileStatus.PENDING for r in records)

    def test_empty_store(self, store: FileStateStore, dispatcher: Dispatcher) -> None:
        register_store_handlers(dispatcher, store)
        assert request_pending_files(dispatcher, timeout=5) == ()

    def test_timeout_without_responder(self, dispatcher: Dispatcher) -> None:
        with pytest.raises(BridgeTimeoutError):
            request_pending_files(dispatcher, timeout=0.1)

    def test_cancel_event(self, dispatcher: Dispatcher) -> None:
        cancel = threading.Event()
        timer = threading.Timer(0.1, cancel.set)
        timer.start()
        try:
            with pytest.raises(BridgeCancelledError):
                request_pending_files(dispatcher, timeout=5, cancel=cancel)
        finally:
            timer.cancel()

    def test_cancelled_request_is_not_answered(self, dispatcher: Dispatcher) -> None:
        gate = threading.Event()
        replies: list[concurrent.futures.Future[object]] = []

        def slow_store(event: PendingFilesRequested) -> None:
            replies.append(event.reply)
            gate.wait(5)
            answer_request(event.reply, tuple)

        dispatcher.subscribe(PendingFilesRequested, slow_store)
        with pytest.raises(BridgeTimeoutError):
            request_pending_files(dispatcher, timeout=0.1)
        gate.set()
        assert dispatcher.flush(timeout=5)
        assert replies[0].cancelled()

    def test_store_failure_is_bridge_error(self, dispatcher: Dispatcher) -> None:
        def broken_store(event: PendingFilesRequested) -> None:
            def fail() -> tuple[()]:
                raise RuntimeError("table is gone")

            answer_request(event.reply, fail)

        dispatcher.subscribe(PendingFilesRequested, broken_store)
        with pytest.raises(BridgeError, match="table is gone") as exc_info:
            request_pending_files(dispatcher, timeout=5)
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_stopped_dispatcher_is_bridge_error(self) -> None:
        d = Dispatcher()
        d.start()
        d.stop()
        with pytest.raises(BridgeError, match="cannot publish"):
            request_pending_files(d, timeout=1)

    def test_call_from_dispatch_thread_fails_fast(self, dispatcher: Dispatcher) -> None:
        errors: list[BridgeError] = []

        def handler(event: object) -> None:
            try:
                request_pending_files(dispatcher, timeout=5)
            except BridgeError as exc:
                errors.append(exc)

        dispatcher.subscribe(FilesCompleted, handler)
        dispatcher.publish(FilesCompleted(fingerprints=()))
        assert dispatcher.flush(timeout=5)
        assert len(errors) == 1
        assert "dispatcher thread" in str(errors[0])


class TestRequestStatusCounts:
    def test_counts(self, store: FileStateStore, dispatcher: Dispatcher, tmp_path: Path) -> None:
        register_store_handlers(dispatcher, store)
        store.merge(Observation.success(str(tmp_path / "a.md"), 1))
        store.merge(Observation.failure(str(tmp_path / "b.md"), OSError("x")))

        counts = request_status_counts(dispatcher, timeout=5)

        assert counts[FileStatus.PENDING] == 1
        assert counts[FileStatus.ERROR] == 1
        assert counts[FileStatus.COMPLETE] == 0


class TestRequestLastCrawl:
    def test_none_before_first_crawl(self, store: FileStateStore, dispatcher: Dispatcher) -> None:
        register_store_handlers(dispatcher, store)
        assert request_last_crawl(dispatcher, timeout=5) is None

    def test_set_by_crawl(
        self, store: FileStateStore, dispatcher: Dispatcher, tmp_path: Path
    ) -> None:
        register_store_handlers(dispatcher, store)
        store.reconcile_crawl([Observation.success(str(tmp_path / "a.md"), 1)])
        assert request_last_crawl(dispatcher, timeout=5) is not None
