"""Indexer: pulls Pending records through the bridge and indexes them in batches."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from notehunt.events.bridge import DEFAULT_REQUEST_TIMEOUT, request_pending_files
from notehunt.events.models import FilesCompleted
from notehunt.search.index import SearchIndexError

if TYPE_CHECKING:
    import threading
    from collections.abc import Iterator, Sequence

    from notehunt.events.dispatcher import Dispatcher
    from notehunt.search.index import SearchIndex
    from notehunt.sync.models import FileStateRecord

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50

T = TypeVar("T")


@dataclass
class IndexRunResult:
    """Summary of one indexing pass."""

    requested: int = 0
    indexed: int = 0
    failed: int = 0
    batches: int = 0
    completion_events: int = 0


def batched(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of *items* with at most *size* elements."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    for start in range(0, len(items), size):
        yield items[start : start + size]


class Indexer:
    """Writes Pending files into the search index and reports completions.

    A file that fails to read or index is logged and left Pending; the next
    run retries it.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        search_index: SearchIndex,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        request_timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch size must be >= 1, got {batch_size}")
        self._dispatcher = dispatcher
        self._index = search_index
        self.batch_size = batch_size
        self.request_timeout = request_timeout

    def index_files_from_store(self, cancel: threading.Event | None = None) -> IndexRunResult:
        """Run one indexing pass over every Pending record.

        Publishes one :class:`FilesCompleted` per batch with at least one
        success.  Raises :class:`~notehunt.events.bridge.BridgeError` if the
        Pending list cannot be obtained.
        """
        pending = request_pending_files(
            self._dispatcher, timeout=self.request_timeout, cancel=cancel
        )
        result = IndexRunResult(requested=len(pending))
        if not pending:
            logger.info("Nothing to index")
            return result

        for batch in batched(pending, self.batch_size):
            if cancel is not None and cancel.is_set():
                logger.info("Indexing cancelled after %d batch(es)", result.batches)
                break
            completed = self._index_batch(batch)
            result.batches += 1
            result.indexed += len(completed)
            result.failed += len(batch) - len(completed)
            if completed:
                self._dispatcher.publish(FilesCompleted(fingerprints=tuple(completed)))
                result.completion_events += 1

        logger.info(
            "Indexed %d of %d pending file(s) in %d batch(es), %d failed",
            result.indexed,
            result.requested,
            result.batches,
            result.failed,
        )
        return result

    def _index_batch(self, batch: Sequence[FileStateRecord]) -> list[str]:
        completed: list[str] = []
        for record in batch:
            try:
                content = Path(record.path).read_text(encoding="utf-8", errors="replace")
                self._index.add_document(record.path, content)
            except (OSError, SearchIndexError) as exc:
                logger.warning("Skipping %s: %s", record.path, exc)
                continue
            completed.append(record.fingerprint)
        # Documents must be durable before their rows may become Complete.
        try:
            self._index.commit()
        except SearchIndexError as exc:
            logger.error("Batch of %d file(s) not committed: %s", len(batch), exc)
            try:
                self._index.rollback()
            except SearchIndexError as rollback_exc:
                logger.warning("Rollback after failed commit also failed: %s", rollback_exc)
            return []
        return completed
