"""Service wiring: one configuration, one dispatcher, one store, one index.

Every mutation of ``file_states`` goes through a published event; the
service itself only crawls, indexes and waits.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from notehunt.events.bridge import (
    BridgeCancelledError,
    request_last_crawl,
    request_status_counts,
)
from notehunt.events.dispatcher import Dispatcher
from notehunt.events.models import FileChanged, FilesPurged, FilesRequeued, FileTreeCrawled
from notehunt.infrastructure.fingerprint import fingerprint
from notehunt.search.index import SearchIndex
from notehunt.search.indexer import Indexer, IndexRunResult
from notehunt.sync.crawler import CrawlError, crawl
from notehunt.sync.store import FileStateStore, register_store_handlers

if TYPE_CHECKING:
    import os
    from collections.abc import Iterable
    from types import TracebackType

    from notehunt.config import NotehuntConfig
    from notehunt.sync.models import FileStatus

logger = logging.getLogger(__name__)

# How often the watch loop wakes up to check the stop event and the watcher.
_WATCH_POLL_INTERVAL = 0.5


class ServiceNotStartedError(RuntimeError):
    """Raised when an operation needs a started service."""


@dataclass(frozen=True)
class ScanResult:
    observed: int
    errors: int


class NotehuntService:
    """Runs the reconciliation engine for one watched directory.

    Parameters
    ----------
    config:
        Resolved configuration.
    dispatcher:
        Dispatcher to use; a fresh one is created when omitted.
    """

    def __init__(self, config: NotehuntConfig, *, dispatcher: Dispatcher | None = None) -> None:
        self.config = config
        self.dispatcher = dispatcher if dispatcher is not None else Dispatcher()
        self._store: FileStateStore | None = None
        self._search_index: SearchIndex | None = None
        self._changed = threading.Event()
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Open the store, subscribe it and start delivery.

        Raises :class:`CrawlError` for a missing root and
        :class:`~notehunt.sync.store.StoreError` for an unreachable store.
        """
        if self._started:
            return
        root = self.config.directory_path
        if not root.is_dir():
            raise CrawlError(f"directory does not exist: {root}")
        self._store = FileStateStore.open(self.config.state_path)
        register_store_handlers(self.dispatcher, self._store)
        # Registered after the store, so it runs once the change is applied.
        self.dispatcher.subscribe(FileChanged, self._on_file_changed)
        self.dispatcher.start()
        self._started = True
        logger.info("Service started for %s", root)

    def stop(self) -> None:
        """Drain the dispatcher and close both databases."""
        if not self._started:
            return
        self.dispatcher.stop()
        if self._search_index is not None:
            self._search_index.close()
            self._search_index = None
        if self._store is not None:
            self._store.close()
            self._store = None
        self._started = False
        logger.info("Service stopped")

    def __enter__(self) -> NotehuntService:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()

    def _require_started(self) -> None:
        if not self._started:
            raise ServiceNotStartedError("service is not started")

    def _flush(self) -> None:
        if not self.dispatcher.flush(timeout=self.config.request_timeout):
            logger.warning(
                "Dispatcher did not drain within %ss", self.config.request_timeout
            )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def scan(self) -> ScanResult:
        """Crawl the root and reconcile the result (merge, then stale sweep)."""
        self._require_started()
        root = self.config.directory_path
        observations = crawl(
            root,
            extensions=self.config.extensions,
            exclude=self.config.excluded_paths,
        )
        self.dispatcher.publish(FileTreeCrawled(root=str(root), observations=tuple(observations)))
        self._flush()
        errors = sum(1 for o in observations if not o.ok)
        return ScanResult(observed=len(observations), errors=errors)

    def _index(self) -> SearchIndex:
        if self._search_index is None:
            self._search_index = SearchIndex.open(self.config.index_path)
        return self._search_index

    def index(self, cancel: threading.Event | None = None) -> IndexRunResult:
        """Index every Pending file; completions are applied before returning."""
        self._require_started()
        indexer = Indexer(
            self.dispatcher,
            self._index(),
            batch_size=self.config.batch_size,
            request_timeout=self.config.request_timeout,
        )
        result = indexer.index_files_from_store(cancel=cancel)
        self._flush()
        return result

    def requeue(self, paths: Iterable[str | os.PathLike[str]] | None = None) -> None:
        """Mark *paths* Pending again; ``None`` requeues every Complete record."""
        self._require_started()
        fingerprints = None if paths is None else tuple(fingerprint(p) for p in paths)
        self.dispatcher.publish(FilesRequeued(fingerprints=fingerprints))
        self._flush()

    def purge(self, paths: Iterable[str | os.PathLike[str]] | None = None) -> None:
        """Physically delete *paths*' records; ``None`` purges every Deleted record."""
        self._require_started()
        fingerprints = None if paths is None else tuple(fingerprint(p) for p in paths)
        self.dispatcher.publish(FilesPurged(fingerprints=fingerprints))
        self._flush()

    def status_counts(self) -> dict[FileStatus, int]:
        self._require_started()
        return request_status_counts(self.dispatcher, timeout=self.config.request_timeout)

    def last_crawl_at(self) -> str | None:
        self._require_started()
        return request_last_crawl(self.dispatcher, timeout=self.config.request_timeout)

    # ------------------------------------------------------------------
    # Live watching
    # ------------------------------------------------------------------

    def _on_file_changed(self, event: FileChanged) -> None:
        self._changed.set()

    def watch(self, stop_event: threading.Event) -> None:
        """Scan, index, then follow live changes until *stop_event* is set.

        Each wake-up after a delivered change runs one indexing pass.  Raises
        :class:`~notehunt.sync.watcher.WatcherError` if the watch source fails.
        """
        from notehunt.sync.watcher import ChangeWatcher

        self._require_started()
        self.scan()
        self.index(cancel=stop_event)

        watcher = ChangeWatcher(
            self.config.directory_path,
            self.dispatcher,
            extensions=self.config.extensions,
            exclude=self.config.excluded_paths,
            debounce_ms=self.config.debounce_ms,
        )
        watcher.start()
        try:
            while not stop_event.is_set():
                if self._changed.wait(_WATCH_POLL_INTERVAL):
                    self._changed.clear()
                    try:
                        self.index(cancel=stop_event)
                    except BridgeCancelledError:
                        break
                elif not watcher.running:
                    break
        finally:
            watcher.stop()
        # Surfaces a failure of the watch source.
        watcher.join()
