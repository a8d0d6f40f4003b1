"""Path fingerprints: stable identities for files, independent of their content."""

from __future__ import annotations

import hashlib
import os


def canonical_path(path: str | os.PathLike[str]) -> str:
    """Return the absolute, normalized form of *path*.

    Symlinks are not resolved, so a path that no longer exists on disk keeps
    the same canonical form (and fingerprint) it had while it existed.
    """
    return os.path.normpath(os.path.abspath(os.fspath(path)))


def fingerprint(path: str | os.PathLike[str]) -> str:
    """Return the 32-char MD5 hex digest of the canonical form of *path*."""
    return hashlib.md5(canonical_path(path).encode("utf-8")).hexdigest()
