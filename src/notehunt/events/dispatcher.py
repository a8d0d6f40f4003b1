"""Event dispatcher: many producers, one serialized delivery thread.

Producers on any thread call :meth:`Dispatcher.publish`; a single worker
thread hands every event to its subscribers strictly in publish order, so
subscribers never run concurrently with each other.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, TypeVar

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

E = TypeVar("E")
Handler = Callable[[Any], None]

DEFAULT_STOP_TIMEOUT = 5.0


class DispatcherClosedError(RuntimeError):
    """Raised when publishing to a dispatcher that has been stopped."""


@dataclass(frozen=True)
class _Envelope:
    event: object
    handlers: tuple[Handler, ...]


_STOP = object()


class Dispatcher:
    """In-process publish/subscribe bus with a single delivery lane.

    Handlers are registered per event class and kept in registration order;
    an event is delivered to the handlers of its class and of its base
    classes.  The handler list is captured at publish time, so a subscriber
    added later never sees earlier events.  Nothing is persisted.
    """

    def __init__(self, name: str = "event-dispatcher") -> None:
        self.name = name
        self._handlers: dict[type, list[Handler]] = {}
        self._lock = threading.Lock()
        self._queue: queue.Queue[object] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Registration / publishing
    # ------------------------------------------------------------------

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> None:
        """Register *handler* for events of *event_type* (and its subclasses)."""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def publish(self, event: object) -> None:
        """Enqueue *event* for delivery.  Safe from any thread, never blocks on handlers."""
        with self._lock:
            if self._closed:
                raise DispatcherClosedError(f"dispatcher {self.name!r} is stopped")
            handlers: list[Handler] = []
            for cls in type(event).__mro__:
                handlers.extend(self._handlers.get(cls, ()))
            if not handlers:
                logger.debug("No subscribers for %s", type(event).__name__)
            self._queue.put(_Envelope(event, tuple(handlers)))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the delivery thread.  Events published earlier are delivered now."""
        with self._lock:
            if self._closed:
                raise DispatcherClosedError(f"dispatcher {self.name!r} is stopped")
            if self._thread is not None:
                return
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.debug("Dispatcher %s started", self.name)

    def stop(self, timeout: float | None = DEFAULT_STOP_TIMEOUT) -> None:
        """Refuse new events, deliver everything already queued, then stop."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_STOP)
            thread = self._thread

        if thread is None:
            logger.warning(
                "Dispatcher %s stopped before start; %d event(s) dropped",
                self.name,
                self._queue.qsize() - 1,
            )
            return
        if thread is threading.current_thread():
            return
        thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning("Dispatcher %s did not stop within %ss", self.name, timeout)
        else:
            logger.debug("Dispatcher %s stopped", self.name)

    def flush(self, timeout: float | None = None) -> bool:
        """Block until every event published before this call has been delivered.

        Returns ``False`` if *timeout* expires first.
        """
        if self.is_dispatch_thread():
            raise RuntimeError("flush() called from the dispatcher thread would deadlock")
        marker = threading.Event()
        with self._lock:
            if self._closed:
                raise DispatcherClosedError(f"dispatcher {self.name!r} is stopped")
            self._queue.put(marker)
        return marker.wait(timeout)

    def is_dispatch_thread(self) -> bool:
        """Return True when called from the delivery thread itself."""
        return self._thread is not None and threading.current_thread() is self._thread

    def __enter__(self) -> Dispatcher:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Delivery thread
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            if isinstance(item, threading.Event):
                item.set()
                continue
            if isinstance(item, _Envelope):
                self._deliver(item)

    def _deliver(self, envelope: _Envelope) -> None:
        event_name = type(envelope.event).__name__
        for handler in envelope.handlers:
            try:
                handler(envelope.event)
            except Exception:
                logger.exception(
                    "Handler %s failed on %s; event dropped",
                    getattr(handler, "__qualname__", repr(handler)),
                    event_name,
                )
