"""Records exchanged between the crawler, the watcher and the file state store."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from notehunt.infrastructure.fingerprint import canonical_path, fingerprint


class ObservationStatus(str, enum.Enum):
    """Outcome of visiting one file."""

    SUCCESS = "Success"
    ERROR = "Error"


class ChangeKind(str, enum.Enum):
    """Kind of a live filesystem change."""

    CREATED = "Created"
    MODIFIED = "Modified"
    DELETED = "Deleted"


class FileStatus(str, enum.Enum):
    """Persisted status of a ``file_states`` row (values match the CHECK constraint)."""

    PENDING = "Pending"
    IN_PROGRESS = "In_Progress"
    COMPLETE = "Complete"
    ERROR = "Error"
    DELETED = "Deleted"


@dataclass(frozen=True)
class Observation:
    """Outcome of visiting a single file during a crawl.

    A successful visit carries the file's ``st_mtime_ns`` in *last_modified*;
    a failed one carries a readable *error_detail* and no timestamp.
    """

    path: str
    fingerprint: str
    status: ObservationStatus
    last_modified: int | None = None
    error_detail: str | None = None

    def __post_init__(self) -> None:
        if self.status is ObservationStatus.SUCCESS:
            if self.last_modified is None or self.error_detail is not None:
                raise ValueError("successful observation needs last_modified and no error_detail")
        elif self.error_detail is None or self.last_modified is not None:
            raise ValueError("failed observation needs error_detail and no last_modified")

    @classmethod
    def success(cls, path: str, last_modified: int) -> Observation:
        canonical = canonical_path(path)
        return cls(
            path=canonical,
            fingerprint=fingerprint(canonical),
            status=ObservationStatus.SUCCESS,
            last_modified=last_modified,
        )

    @classmethod
    def failure(cls, path: str, exc: BaseException) -> Observation:
        canonical = canonical_path(path)
        return cls(
            path=canonical,
            fingerprint=fingerprint(canonical),
            status=ObservationStatus.ERROR,
            error_detail=f"{type(exc).__name__}: {exc}",
        )

    @property
    def ok(self) -> bool:
        return self.status is ObservationStatus.SUCCESS


@dataclass(frozen=True)
class ChangeNotification:
    """A live filesystem change for one path that passed the extension filter."""

    fingerprint: str
    path: str
    kind: ChangeKind

    @classmethod
    def for_path(cls, path: str, kind: ChangeKind) -> ChangeNotification:
        canonical = canonical_path(path)
        return cls(fingerprint=fingerprint(canonical), path=canonical, kind=kind)


@dataclass(frozen=True)
class FileStateRecord:
    """Read copy of one ``file_states`` row."""

    path: str
    fingerprint: str
    status: FileStatus
    last_modified: int | None = None
    error_message: str | None = None
