"""Events domain: event kinds, serialized dispatcher, pending-files bridge."""

from notehunt.events.bridge import (
    BridgeCancelledError,
    BridgeError,
    BridgeTimeoutError,
    answer_request,
    request_last_crawl,
    request_pending_files,
    request_status_counts,
)
from notehunt.events.dispatcher import Dispatcher, DispatcherClosedError
from notehunt.events.models import (
    Event,
    FileChanged,
    FilesCompleted,
    FilesPurged,
    FilesRequeued,
    FileTreeCrawled,
    LastCrawlRequested,
    PendingFilesRequested,
    StatusCountsRequested,
)

__all__ = [
    "BridgeCancelledError",
    "BridgeError",
    "BridgeTimeoutError",
    "Dispatcher",
    "DispatcherClosedError",
    "Event",
    "FileChanged",
    "FileTreeCrawled",
    "FilesCompleted",
    "FilesPurged",
    "FilesRequeued",
    "LastCrawlRequested",
    "PendingFilesRequested",
    "StatusCountsRequested",
    "answer_request",
    "request_last_crawl",
    "request_pending_files",
    "request_status_counts",
]
