"""Pending-files bridge: a blocking request answered through the dispatcher.

The caller publishes a request event carrying an empty future and waits on
it; the file state store fulfills the future from the dispatcher thread.
The wait is bounded by a timeout and can be cancelled.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from notehunt.events.models import (
    LastCrawlRequested,
    PendingFilesRequested,
    StatusCountsRequested,
)

if TYPE_CHECKING:
    import threading

    from notehunt.events.dispatcher import Dispatcher
    from notehunt.sync.models import FileStateRecord, FileStatus

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0

# How often a waiting caller re-checks its cancel event.
_POLL_INTERVAL = 0.05

R = TypeVar("R")


class BridgeError(Exception):
    """A request through the dispatcher could not be answered."""


class BridgeTimeoutError(BridgeError):
    """No reply arrived within the timeout."""


class BridgeCancelledError(BridgeError):
    """The caller cancelled the request before a reply arrived."""


def _await_reply(
    dispatcher: Dispatcher,
    event: Any,
    reply: concurrent.futures.Future[R],
    *,
    what: str,
    timeout: float | None,
    cancel: threading.Event | None,
) -> R:
    if dispatcher.is_dispatch_thread():
        raise BridgeError(f"{what} request issued from the dispatcher thread")
    try:
        dispatcher.publish(event)
    except RuntimeError as exc:
        raise BridgeError(f"cannot publish {what} request: {exc}") from exc

    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        wait_for = _POLL_INTERVAL if cancel is not None else None
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                reply.cancel()
                raise BridgeTimeoutError(f"no reply to {what} request within {timeout}s")
            wait_for = remaining if wait_for is None else min(wait_for, remaining)

        try:
            return reply.result(timeout=wait_for)
        except concurrent.futures.TimeoutError:
            if cancel is not None and cancel.is_set():
                reply.cancel()
                raise BridgeCancelledError(f"{what} request cancelled") from None
        except concurrent.futures.CancelledError:
            raise BridgeCancelledError(f"{what} request cancelled") from None
        except Exception as exc:
            raise BridgeError(f"store failed to answer {what} request: {exc}") from exc


def request_pending_files(
    dispatcher: Dispatcher,
    *,
    timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
    cancel: threading.Event | None = None,
) -> tuple[FileStateRecord, ...]:
    """Return the store's current Pending records.

    Must not be called from the dispatcher thread: the reply is produced on
    that thread, so waiting there could never finish.

    Raises
    ------
    BridgeTimeoutError
        No reply within *timeout* seconds (``None`` waits forever).
    BridgeCancelledError
        *cancel* was set while waiting.
    BridgeError
        The store failed to read its table, or the dispatcher is stopped.
    """
    reply: concurrent.futures.Future[tuple[FileStateRecord, ...]] = concurrent.futures.Future()
    records = _await_reply(
        dispatcher,
        PendingFilesRequested(reply=reply),
        reply,
        what="pending-files",
        timeout=timeout,
        cancel=cancel,
    )
    logger.debug("Bridge reply: %d pending file(s)", len(records))
    return records


def request_status_counts(
    dispatcher: Dispatcher,
    *,
    timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
) -> dict[FileStatus, int]:
    """Return the store's row count per status, read on the dispatcher thread."""
    reply: concurrent.futures.Future[dict[FileStatus, int]] = concurrent.futures.Future()
    return _await_reply(
        dispatcher,
        StatusCountsRequested(reply=reply),
        reply,
        what="status-counts",
        timeout=timeout,
        cancel=None,
    )


def request_last_crawl(
    dispatcher: Dispatcher,
    *,
    timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
) -> str | None:
    """Return when the store last reconciled a full crawl, or ``None`` if never."""
    reply: concurrent.futures.Future[str | None] = concurrent.futures.Future()
    return _await_reply(
        dispatcher,
        LastCrawlRequested(reply=reply),
        reply,
        what="last-crawl",
        timeout=timeout,
        cancel=None,
    )


def answer_request(
    reply: concurrent.futures.Future[R],
    fetch: Callable[[], R],
) -> None:
    """Fulfill *reply* with ``fetch()`` or with the exception it raised.

    A request the caller already cancelled (e.g. on timeout) is skipped.
    """
    if not reply.set_running_or_notify_cancel():
        logger.debug("Request was cancelled before it was answered")
        return
    try:
        result = fetch()
    except Exception as exc:
        logger.warning("Request failed: %s", exc)
        reply.set_exception(exc)
        return
    reply.set_result(result)
