"""Shared test fixtures for Notehunt."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from notehunt.events.dispatcher import Dispatcher
from notehunt.sync.store import FileStateStore

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture()
def notes_root(tmp_path: Path) -> Path:
    """A small directory of notes: two markdown files, one text file, one nested."""
    root = tmp_path / "notes"
    (root / "sub").mkdir(parents=True)
    (root / "alpha.md").write_text("# Alpha\n\nApples and apricots.\n", encoding="utf-8")
    (root / "beta.md").write_text("# Beta\n\nBananas.\n", encoding="utf-8")
    (root / "readme.txt").write_text("plain text\n", encoding="utf-8")
    (root / "sub" / "gamma.MD").write_text("# Gamma\n\nGrapes.\n", encoding="utf-8")
    return root


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[FileStateStore]:
    s = FileStateStore.open(tmp_path / "state" / "state.db")
    yield s
    s.close()


@pytest.fixture()
def dispatcher() -> Iterator[Dispatcher]:
    d = Dispatcher(name="test-dispatcher")
    d.start()
    yield d
    d.stop()
