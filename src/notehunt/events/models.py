"""Event kinds carried by the dispatcher.

Every state-affecting event is applied by the file state store in publish
order; the store is the only subscriber that mutates ``file_states``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from concurrent.futures import Future

    from notehunt.sync.models import (
        ChangeNotification,
        FileStateRecord,
        FileStatus,
        Observation,
    )


@dataclass(frozen=True)
class Event:
    """Base class of all dispatcher events."""


@dataclass(frozen=True)
class FileTreeCrawled(Event):
    """A full crawl finished: merge every observation, then sweep the rest."""

    root: str
    observations: tuple[Observation, ...]


@dataclass(frozen=True)
class FileChanged(Event):
    """A live change notification from the watcher."""

    notification: ChangeNotification


@dataclass(frozen=True)
class PendingFilesRequested(Event):
    """Request for the current Pending records; the store fulfills *reply*."""

    reply: Future[tuple[FileStateRecord, ...]] = field(compare=False)


@dataclass(frozen=True)
class FilesCompleted(Event):
    """Fingerprints the indexer wrote to the search index in one batch."""

    fingerprints: tuple[str, ...]


@dataclass(frozen=True)
class FilesRequeued(Event):
    """Force records back to Pending so the next run re-indexes them.

    ``None`` requeues every Complete row.
    """

    fingerprints: tuple[str, ...] | None = None


@dataclass(frozen=True)
class FilesPurged(Event):
    """Physically delete rows.  ``None`` purges every Deleted row."""

    fingerprints: tuple[str, ...] | None = None


@dataclass(frozen=True)
class StatusCountsRequested(Event):
    """Request for per-status row counts; the store fulfills *reply*."""

    reply: Future[dict[FileStatus, int]] = field(compare=False)


@dataclass(frozen=True)
class LastCrawlRequested(Event):
    """Request for the time of the last reconciled crawl (ISO 8601 or ``None``)."""

    reply: Future[str | None] = field(compare=False)
