"""Search index: SQLite FTS5 document store fed by the indexer."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING

from notehunt.infrastructure.db import open_db

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.db"

_SCHEMA_SQL = """\
CREATE VIRTUAL TABLE IF NOT EXISTS documents USING fts5(
    path UNINDEXED,
    content
);
"""


class SearchIndexError(Exception):
    """Raised when the search index cannot be opened, written or queried."""


@dataclass(frozen=True)
class SearchHit:
    path: str
    snippet: str
    rank: float


def _escape_fts5_query(query: str) -> str:
    """Escape and prepare a query string for FTS5 MATCH.

    Splits into words and double-quotes each token so that special
    characters (``*``, ``-``, ``:``, etc.) are treated as literals.
    """
    words = query.strip().split()
    if not words:
        return ""
    return " ".join('"{}"'.format(w.replace('"', '""')) for w in words)


class SearchIndex:
    """Full-text index stored in ``<index_dir>/index.db``.

    Used only by the indexer thread (writes) and by one-shot readers such as
    the ``search`` command.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    @classmethod
    def open(cls, index_dir: Path) -> SearchIndex:
        try:
            index_dir.mkdir(parents=True, exist_ok=True)
            conn = open_db(index_dir / INDEX_FILENAME, check_same_thread=False)
            conn.executescript(_SCHEMA_SQL)
        except (OSError, sqlite3.Error) as exc:
            raise SearchIndexError(f"cannot open search index at {index_dir}: {exc}") from exc
        return cls(conn)

    def add_document(self, path: str, content: str) -> None:
        """Add *path* with *content*, replacing an earlier document for the same path.

        Changes become durable on :meth:`commit`.  A failed add leaves the
        earlier document in place.
        """
        try:
            if not self._conn.in_transaction:
                self._conn.execute("BEGIN")
            self._conn.execute("SAVEPOINT add_document")
            try:
                self._conn.execute("DELETE FROM documents WHERE path = ?", (path,))
                self._conn.execute(
                    "INSERT INTO documents (path, content) VALUES (?, ?)",
                    (path, content),
                )
            except sqlite3.Error:
                self._conn.execute("ROLLBACK TO add_document")
                raise
            finally:
                self._conn.execute("RELEASE add_document")
        except sqlite3.Error as exc:
            raise SearchIndexError(f"cannot index {path}: {exc}") from exc

    def commit(self) -> None:
        try:
            self._conn.commit()
        except sqlite3.Error as exc:
            raise SearchIndexError(f"commit failed: {exc}") from exc

    def rollback(self) -> None:
        """Discard everything added since the last :meth:`commit`."""
        try:
            self._conn.rollback()
        except sqlite3.Error as exc:
            raise SearchIndexError(f"rollback failed: {exc}") from exc

    def search(self, query: str, *, limit: int = 10) -> list[SearchHit]:
        """Search using FTS5 full-text search, best match first."""
        safe_query = _escape_fts5_query(query)
        if not safe_query:
            return []
        try:
            rows = self._conn.execute(
                "SELECT path, "
                "snippet(documents, 1, '[', ']', '...', 16) AS snippet, "
                "rank "
                "FROM documents "
                "WHERE documents MATCH ? "
                "ORDER BY rank "
                "LIMIT ?",
                (safe_query, limit),
            ).fetchall()
        except sqlite3.Error as exc:
            raise SearchIndexError(f"search failed: {exc}") from exc
        return [SearchHit(path=r["path"], snippet=r["snippet"], rank=r["rank"]) for r in rows]

    def count(self) -> int:
        row = self._conn.execute("SELECT count(*) FROM documents").fetchone()
        return int(row[0])

    def close(self) -> None:
        self._conn.close()
