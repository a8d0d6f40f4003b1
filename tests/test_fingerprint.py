"""Tests for notehunt.infrastructure.fingerprint."""

from __future__ import annotations

import hashlib
import os
from typing import TYPE_CHECKING

import pytest

from notehunt.infrastructure.fingerprint import canonical_path, fingerprint

if TYPE_CHECKING:
    from pathlib import Path


class TestCanonicalPath:
    def test_absolute_and_normalized(self, tmp_path: Path) -> None:
        messy = os.path.join(str(tmp_path), "a", "..", "b", ".", "note.md")
        assert canonical_path(messy) == os.path.join(str(tmp_path), "b", "note.md")

    def test_relative_resolved_against_cwd(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        assert canonical_path("note.md") == os.path.join(os.getcwd(), "note.md")

    def test_accepts_pathlike(self, tmp_path: Path) -> None:
        assert canonical_path(tmp_path / "x.md") == os.path.join(str(tmp_path), "x.md")


class TestFingerprint:
    def test_md5_of_canonical_path(self, tmp_path: Path) -> None:
        path = str(tmp_path / "note.md")
        expected = hashlib.md5(path.encode("utf-8")).hexdigest()
        assert fingerprint(path) == expected

    def test_is_32_hex_chars(self, tmp_path: Path) -> None:
        fp = fingerprint(tmp_path / "note.md")
        assert len(fp) == 32
        int(fp, 16)

    def test_spellings_of_same_path_agree(self, tmp_path: Path) -> None:
        direct = tmp_path / "note.md"
        roundabout = os.path.join(str(tmp_path), "sub", "..", "note.md")
        assert fingerprint(direct) == fingerprint(roundabout)

    def test_distinct_paths_differ(self, tmp_path: Path) -> None:
        assert fingerprint(tmp_path / "a.md") != fingerprint(tmp_path / "b.md")

    def test_file_need_not_exist(self, tmp_path: Path) -> None:
        # Deleted files must still map to their record.
        assert fingerprint(tmp_path / "gone.md") == fingerprint(str(tmp_path / "gone.md"))
