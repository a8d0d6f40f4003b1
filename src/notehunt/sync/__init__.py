"""Sync domain: crawler, watcher and the file state store that reconciles them.

Note: ``notehunt.sync.watcher`` is not re-exported here so that importing the
store or the crawler does not require the ``watchfiles`` native extension.
Import it directly::

    from notehunt.sync.watcher import ChangeWatcher
"""

from notehunt.sync.crawler import (
    CrawlError,
    crawl,
    crawl_fingerprints,
    normalize_extensions,
    observe_file,
)
from notehunt.sync.models import (
    ChangeKind,
    ChangeNotification,
    FileStateRecord,
    FileStatus,
    Observation,
    ObservationStatus,
)
from notehunt.sync.store import FileStateStore, StoreError, register_store_handlers

__all__ = [
    "ChangeKind",
    "ChangeNotification",
    "CrawlError",
    "FileStateRecord",
    "FileStateStore",
    "FileStatus",
    "Observation",
    "ObservationStatus",
    "StoreError",
    "crawl",
    "crawl_fingerprints",
    "normalize_extensions",
    "observe_file",
    "register_store_handlers",
]
