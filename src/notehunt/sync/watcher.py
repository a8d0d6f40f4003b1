"""Change watcher: turns ``watchfiles`` batches into FileChanged events.

The blocking loop is a plain function taking an explicit stop event;
:class:`ChangeWatcher` runs it on its own thread and keeps any fatal error
of the watch source for the caller.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from watchfiles import Change, watch

from notehunt.events.dispatcher import DispatcherClosedError
from notehunt.events.models import FileChanged
from notehunt.infrastructure.fingerprint import canonical_path
from notehunt.sync.crawler import is_excluded, matches_extensions, normalize_extensions
from notehunt.sync.models import ChangeKind, ChangeNotification

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from notehunt.events.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 500

_CHANGE_KINDS: dict[Change, ChangeKind] = {
    Change.added: ChangeKind.CREATED,
    Change.modified: ChangeKind.MODIFIED,
    Change.deleted: ChangeKind.DELETED,
}


class WatcherError(Exception):
    """The watch source failed; the watcher does not retry."""


def to_notifications(
    batch: Iterable[tuple[Change, str]],
    extensions: frozenset[str],
    exclude: list[str],
) -> list[ChangeNotification]:
    """Filter one raw batch and collapse it to one notification per path.

    A batch is an unordered set.  When a path shows up with more than one
    kind of change (an editor replacing the file on save, say), the file on
    disk decides: Modified if it is there, Deleted if it is gone.
    """
    changes: dict[str, set[Change]] = {}
    for change, path_str in batch:
        path = canonical_path(path_str)
        if is_excluded(path, exclude):
            continue
        if not matches_extensions(path, extensions):
            continue
        changes.setdefault(path, set()).add(change)

    result: list[ChangeNotification] = []
    for path in sorted(changes):
        seen = changes[path]
        if len(seen) == 1:
            kind = _CHANGE_KINDS[next(iter(seen))]
        elif os.path.isfile(path):
            kind = ChangeKind.MODIFIED
        else:
            kind = ChangeKind.DELETED
        result.append(ChangeNotification.for_path(path, kind))
    return result


def watch_changes(
    root: str | os.PathLike[str],
    publish: Callable[[FileChanged], None],
    stop_event: threading.Event,
    *,
    extensions: Iterable[str] | None = None,
    exclude: Iterable[str | os.PathLike[str]] = (),
    debounce_ms: int = DEFAULT_DEBOUNCE_MS,
) -> None:
    """Blocking watch loop: publish one :class:`FileChanged` per relevant change.

    Returns when *stop_event* is set or when *publish* reports a stopped
    dispatcher.  Failures of the watch source propagate to the caller.
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise WatcherError(f"watch root is not a directory: {root_path}")

    allowed = normalize_extensions(extensions)
    excluded = [canonical_path(p) for p in exclude]
    logger.info("Watching %s (debounce %dms)", root_path, debounce_ms)

    for batch in watch(
        root_path,
        watch_filter=None,
        debounce=debounce_ms,
        step=100,
        stop_event=stop_event,
        recursive=True,
    ):
        if stop_event.is_set():
            break
        notifications = to_notifications(batch, allowed, excluded)
        if not notifications:
            continue
        logger.debug("Watcher batch: %d relevant change(s)", len(notifications))
        try:
            for notification in notifications:
                publish(FileChanged(notification))
        except DispatcherClosedError:
            logger.info("Dispatcher stopped; watcher exiting")
            return

    logger.info("Stopped watching %s", root_path)


class ChangeWatcher:
    """Runs :func:`watch_changes` on a dedicated thread."""

    def __init__(
        self,
        root: str | os.PathLike[str],
        dispatcher: Dispatcher,
        *,
        extensions: Iterable[str] | None = None,
        exclude: Iterable[str | os.PathLike[str]] = (),
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    ) -> None:
        self.root = Path(root)
        self._dispatcher = dispatcher
        self._extensions = list(extensions or ())
        self._exclude = list(exclude)
        self._debounce_ms = debounce_ms
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="change-watcher", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            watch_changes(
                self.root,
                self._dispatcher.publish,
                self._stop_event,
                extensions=self._extensions,
                exclude=self._exclude,
                debounce_ms=self._debounce_ms,
            )
        except Exception as exc:
            logger.error("Change watcher on %s failed: %s", self.root, exc)
            self._error = exc

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the loop to finish and wait for the thread."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def join(self, timeout: float | None = None) -> None:
        """Wait for the thread; re-raise a watch-source failure as :class:`WatcherError`."""
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        if self._error is not None:
            if isinstance(self._error, WatcherError):
                raise self._error
            raise WatcherError(f"watching {self.root} failed: {self._error}") from self._error
