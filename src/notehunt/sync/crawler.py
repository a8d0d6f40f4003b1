"""Tree crawler: one Observation per file under a root directory."""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import TYPE_CHECKING

from notehunt.infrastructure.fingerprint import canonical_path
from notehunt.sync.models import Observation

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


class CrawlError(Exception):
    """Raised when the crawl root itself is unusable."""


def normalize_extensions(extensions: Iterable[str] | None) -> frozenset[str]:
    """Lower-case the allowlist and make sure every entry starts with a dot."""
    if not extensions:
        return frozenset()
    result: set[str] = set()
    for ext in extensions:
        ext = ext.strip().lower()
        if not ext:
            continue
        result.add(ext if ext.startswith(".") else f".{ext}")
    return frozenset(result)


def matches_extensions(path: str, extensions: frozenset[str]) -> bool:
    """Return True if *path* passes the allowlist (an empty allowlist passes everything)."""
    if not extensions:
        return True
    name = os.path.basename(path).lower()
    return any(name.endswith(ext) for ext in extensions)


def is_excluded(path: str, exclude: Iterable[str]) -> bool:
    """Return True if *path* is one of the excluded directories or lives below one."""
    for prefix in exclude:
        if path == prefix or path.startswith(prefix + os.sep):
            return True
    return False


def observe_file(path: str | os.PathLike[str]) -> Observation | None:
    """Visit a single path.

    Returns ``None`` for directories and other non-regular files, an Error
    observation when the file cannot be stat'ed or read, and a Success
    observation carrying ``st_mtime_ns`` otherwise.
    """
    path_str = os.fspath(path)
    try:
        st = os.stat(path_str)
    except OSError as exc:
        if os.path.isdir(path_str):
            return None
        return Observation.failure(path_str, exc)

    if not stat.S_ISREG(st.st_mode):
        return None
    if not os.access(path_str, os.R_OK):
        return Observation.failure(path_str, PermissionError(f"Permission denied: '{path_str}'"))
    return Observation.success(path_str, st.st_mtime_ns)


def crawl(
    root: str | os.PathLike[str],
    extensions: Iterable[str] | None = None,
    exclude: Iterable[str | os.PathLike[str]] = (),
) -> list[Observation]:
    """Walk *root* recursively and observe every file passing the allowlist.

    Files outside the allowlist produce no observation at all.  Per-file
    failures become Error observations; unreadable directories are logged
    and skipped.  Order of the result is not significant.

    Raises :class:`CrawlError` if *root* is not an existing directory.
    """
    root = Path(root)
    if not root.is_dir():
        raise CrawlError(f"crawl root is not a directory: {root}")

    allowed = normalize_extensions(extensions)
    excluded = [canonical_path(p) for p in exclude]
    observations: list[Observation] = []

    def _on_walk_error(exc: OSError) -> None:
        logger.warning("Cannot list directory %s: %s", exc.filename, exc)

    for dirpath, dirnames, filenames in os.walk(canonical_path(root), onerror=_on_walk_error):
        # Prune in place so os.walk does not descend into excluded dirs.
        dirnames[:] = [d for d in dirnames if not is_excluded(os.path.join(dirpath, d), excluded)]
        for name in filenames:
            file_path = os.path.join(dirpath, name)
            if not matches_extensions(file_path, allowed):
                continue
            observation = observe_file(file_path)
            if observation is None:
                continue
            if not observation.ok:
                logger.debug("Crawl error for %s: %s", file_path, observation.error_detail)
            observations.append(observation)

    logger.info("Crawled %s: %d file(s)", root, len(observations))
    return observations


def crawl_fingerprints(observations: Iterable[Observation]) -> frozenset[str]:
    """Fingerprint set of a crawl, as consumed by the stale sweep."""
    return frozenset(o.fingerprint for o in observations)
