"""File state store: the durable ``file_states`` table and its reconciliation rules.

Once the service is running the store is touched only from the dispatcher
thread (see :func:`register_store_handlers`), so it does no locking of its own.
Every write runs in a single transaction; a failure rolls back and leaves
the previous state as the recovery point.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from notehunt.events.bridge import answer_request
from notehunt.events.models import (
    FileChanged,
    FilesCompleted,
    FilesPurged,
    FilesRequeued,
    FileTreeCrawled,
    LastCrawlRequested,
    PendingFilesRequested,
    StatusCountsRequested,
)
from notehunt.infrastructure.db import create_schema, get_meta, open_db
from notehunt.sync.crawler import observe_file
from notehunt.sync.models import ChangeKind, FileStateRecord, FileStatus, Observation

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from pathlib import Path

    from notehunt.events.dispatcher import Dispatcher
    from notehunt.sync.models import ChangeNotification

logger = logging.getLogger(__name__)

# Upsert with precedence: an existing row only changes when the incoming
# timestamp is strictly newer, or equal with a non-Pending incoming status.
# Error observations carry no timestamp and count as "equal"; a stored row
# without a timestamp is older than any timestamped observation.
_MERGE_SQL = """\
INSERT INTO file_states (path, path_hash, status, last_modified, error_message)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(path_hash) DO UPDATE SET
    path          = excluded.path,
    status        = excluded.status,
    last_modified = excluded.last_modified,
    error_message = excluded.error_message
WHERE excluded.last_modified IS NULL
   OR file_states.last_modified IS NULL
   OR excluded.last_modified > file_states.last_modified
   OR (excluded.last_modified = file_states.last_modified AND excluded.status <> 'Pending')
"""

_SWEEP_SQL = """\
UPDATE file_states SET status = 'Deleted'
WHERE status <> 'Deleted'
  AND path_hash NOT IN (SELECT path_hash FROM crawl_set)
"""

_SELECT_COLUMNS = "path, path_hash, status, last_modified, error_message"


class StoreError(Exception):
    """Raised when the state database cannot be opened, read or written."""


def _merge_params(observation: Observation) -> tuple[object, ...]:
    status = FileStatus.PENDING if observation.ok else FileStatus.ERROR
    return (
        observation.path,
        observation.fingerprint,
        status.value,
        observation.last_modified,
        observation.error_detail,
    )


def _row_to_record(row: sqlite3.Row) -> FileStateRecord:
    return FileStateRecord(
        path=row["path"],
        fingerprint=row["path_hash"],
        status=FileStatus(row["status"]),
        last_modified=row["last_modified"],
        error_message=row["error_message"],
    )


class FileStateStore:
    """Owner of the ``file_states`` table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.execute("CREATE TEMP TABLE IF NOT EXISTS crawl_set (path_hash TEXT PRIMARY KEY)")

    @classmethod
    def open(cls, db_path: Path) -> FileStateStore:
        """Open (or create) the store at *db_path*.

        The connection may be handed to the dispatcher thread afterwards.
        Raises :class:`StoreError` if the database is unreachable.
        """
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = open_db(db_path, check_same_thread=False)
            create_schema(conn)
        except (OSError, sqlite3.Error) as exc:
            raise StoreError(f"cannot open state store at {db_path}: {exc}") from exc
        logger.debug("Opened state store %s", db_path)
        return cls(conn)

    def close(self) -> None:
        self._conn.close()

    @contextlib.contextmanager
    def _write(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            with self._conn:
                yield self._conn
        except sqlite3.Error as exc:
            raise StoreError(f"{action} failed: {exc}") from exc

    def _changes(self) -> int:
        return self._conn.total_changes

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def merge(self, observation: Observation) -> bool:
        """Upsert one observation.  Returns True if a row was inserted or updated."""
        return self.merge_many([observation]) == 1

    def merge_many(self, observations: Iterable[Observation]) -> int:
        """Upsert observations in one transaction.  Returns the number of rows changed."""
        before = self._changes()
        with self._write("merge") as conn:
            conn.executemany(_MERGE_SQL, (_merge_params(o) for o in observations))
        return self._changes() - before

    def sweep(self, fingerprints: Iterable[str]) -> int:
        """Flag every row missing from the latest crawl as Deleted.

        Rows present in *fingerprints* are left alone.  Returns the number of
        rows flagged.
        """
        with self._write("sweep") as conn:
            flagged = self._sweep(conn, fingerprints)
        return flagged

    def _sweep(self, conn: sqlite3.Connection, fingerprints: Iterable[str]) -> int:
        conn.execute("DELETE FROM crawl_set")
        conn.executemany(
            "INSERT OR IGNORE INTO crawl_set (path_hash) VALUES (?)",
            ((fp,) for fp in fingerprints),
        )
        flagged = conn.execute(_SWEEP_SQL).rowcount
        conn.execute("DELETE FROM crawl_set")
        return flagged

    def reconcile_crawl(self, observations: Iterable[Observation]) -> tuple[int, int]:
        """Merge a full crawl and sweep everything it did not report, atomically.

        Returns ``(rows_merged, rows_flagged_deleted)``.
        """
        observations = list(observations)
        before = self._changes()
        with self._write("crawl reconciliation") as conn:
            conn.executemany(_MERGE_SQL, (_merge_params(o) for o in observations))
            merged = self._changes() - before
            flagged = self._sweep(conn, (o.fingerprint for o in observations))
            conn.execute(
                "INSERT INTO meta (key, value) VALUES ('last_crawl_at', ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (datetime.now(tz=timezone.utc).isoformat(),),
            )
        return merged, flagged

    def apply_change(self, notification: ChangeNotification) -> bool:
        """Apply a live change.  Returns True if the table changed.

        Created/Modified re-observe the path and go through :meth:`merge`;
        Deleted always wins, whatever the timestamps say.
        """
        if notification.kind is ChangeKind.DELETED:
            return self.mark_deleted([notification.fingerprint]) > 0

        observation = observe_file(notification.path)
        if observation is None:
            logger.debug("Ignoring %s for non-file %s", notification.kind.value, notification.path)
            return False
        return self.merge(observation)

    def mark_complete(self, fingerprint: str) -> bool:
        """Advance a Pending row to Complete.  Returns False for a stale completion."""
        return self.mark_complete_many([fingerprint]) == 1

    def mark_complete_many(self, fingerprints: Iterable[str]) -> int:
        """Advance Pending rows to Complete; rows in any other status are ignored."""
        fingerprints = list(fingerprints)
        before = self._changes()
        with self._write("mark complete") as conn:
            conn.executemany(
                "UPDATE file_states SET status = 'Complete' "
                "WHERE path_hash = ? AND status = 'Pending'",
                ((fp,) for fp in fingerprints),
            )
        advanced = self._changes() - before
        if advanced < len(fingerprints):
            logger.debug(
                "Ignored %d stale completion(s)", len(fingerprints) - advanced
            )
        return advanced

    # ------------------------------------------------------------------
    # Bulk updates by fingerprint set
    # ------------------------------------------------------------------

    def _set_status(self, fingerprints: Iterable[str], status: FileStatus, action: str) -> int:
        before = self._changes()
        with self._write(action) as conn:
            conn.executemany(
                "UPDATE file_states SET status = ? WHERE path_hash = ? AND status <> ?",
                ((status.value, fp, status.value) for fp in fingerprints),
            )
        return self._changes() - before

    def mark_deleted(self, fingerprints: Iterable[str]) -> int:
        return self._set_status(fingerprints, FileStatus.DELETED, "mark deleted")

    def mark_pending(self, fingerprints: Iterable[str]) -> int:
        return self._set_status(fingerprints, FileStatus.PENDING, "mark pending")

    def requeue_complete(self) -> int:
        """Move every Complete row back to Pending."""
        with self._write("requeue complete") as conn:
            return conn.execute(
                "UPDATE file_states SET status = 'Pending' WHERE status = 'Complete'"
            ).rowcount

    def purge(self, fingerprints: Iterable[str]) -> int:
        """Physically delete rows by fingerprint."""
        before = self._changes()
        with self._write("purge") as conn:
            conn.executemany(
                "DELETE FROM file_states WHERE path_hash = ?",
                ((fp,) for fp in fingerprints),
            )
        return self._changes() - before

    def purge_deleted(self) -> int:
        """Physically delete every Deleted row."""
        with self._write("purge deleted") as conn:
            return conn.execute("DELETE FROM file_states WHERE status = 'Deleted'").rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, fingerprint: str) -> FileStateRecord | None:
        try:
            row = self._conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM file_states WHERE path_hash = ?",
                (fingerprint,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"read failed: {exc}") from exc
        return _row_to_record(row) if row is not None else None

    def list_by_status(self, status: FileStatus) -> tuple[FileStateRecord, ...]:
        """All rows in *status*, ordered by path, from a single SELECT."""
        try:
            rows = self._conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM file_states WHERE status = ? ORDER BY path",
                (status.value,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"read failed: {exc}") from exc
        return tuple(_row_to_record(r) for r in rows)

    def list_pending(self) -> tuple[FileStateRecord, ...]:
        return self.list_by_status(FileStatus.PENDING)

    def status_counts(self) -> dict[FileStatus, int]:
        """Row count per status; statuses without rows report zero."""
        counts = {status: 0 for status in FileStatus}
        try:
            rows = self._conn.execute(
                "SELECT status, count(*) AS cnt FROM file_states GROUP BY status"
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"read failed: {exc}") from exc
        for row in rows:
            counts[FileStatus(row["status"])] = row["cnt"]
        return counts

    def last_crawl_at(self) -> str | None:
        """ISO 8601 time of the last reconciled crawl, or ``None`` before the first."""
        try:
            return get_meta(self._conn, "last_crawl_at")
        except sqlite3.Error as exc:
            raise StoreError(f"read failed: {exc}") from exc


def register_store_handlers(dispatcher: Dispatcher, store: FileStateStore) -> None:
    """Subscribe *store* to every state-affecting event kind."""

    def _on_crawled(event: FileTreeCrawled) -> None:
        merged, flagged = store.reconcile_crawl(event.observations)
        logger.info(
            "Reconciled crawl of %s: %d row(s) merged, %d flagged deleted",
            event.root,
            merged,
            flagged,
        )

    def _on_changed(event: FileChanged) -> None:
        if store.apply_change(event.notification):
            logger.info(
                "%s %s", event.notification.kind.value, event.notification.path
            )

    def _on_pending_requested(event: PendingFilesRequested) -> None:
        answer_request(event.reply, store.list_pending)

    def _on_status_requested(event: StatusCountsRequested) -> None:
        answer_request(event.reply, store.status_counts)

    def _on_last_crawl_requested(event: LastCrawlRequested) -> None:
        answer_request(event.reply, store.last_crawl_at)

    def _on_completed(event: FilesCompleted) -> None:
        store.mark_complete_many(event.fingerprints)

    def _on_requeued(event: FilesRequeued) -> None:
        if event.fingerprints is None:
            count = store.requeue_complete()
        else:
            count = store.mark_pending(event.fingerprints)
        logger.info("Requeued %d file(s)", count)

    def _on_purged(event: FilesPurged) -> None:
        if event.fingerprints is None:
            count = store.purge_deleted()
        else:
            count = store.purge(event.fingerprints)
        logger.info("Purged %d row(s)", count)

    dispatcher.subscribe(FileTreeCrawled, _on_crawled)
    dispatcher.subscribe(FileChanged, _on_changed)
    dispatcher.subscribe(PendingFilesRequested, _on_pending_requested)
    dispatcher.subscribe(StatusCountsRequested, _on_status_requested)
    dispatcher.subscribe(LastCrawlRequested, _on_last_crawl_requested)
    dispatcher.subscribe(FilesCompleted, _on_completed)
    dispatcher.subscribe(FilesRequeued, _on_requeued)
    dispatcher.subscribe(FilesPurged, _on_purged)
