"""Configuration: ``.notehunt/config.yml`` under the watched root, plus CLI overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from notehunt.events.bridge import DEFAULT_REQUEST_TIMEOUT
from notehunt.search.indexer import DEFAULT_BATCH_SIZE

STATE_DIRNAME = ".notehunt"
CONFIG_FILENAME = "config.yml"
# Debounce window in milliseconds, same default as sync.watcher.
DEFAULT_DEBOUNCE_MS = 500

_KNOWN_KEYS = frozenset(
    {
        "directory_path",
        "index_path",
        "state_path",
        "batch_size",
        "extensions",
        "debounce_ms",
        "request_timeout",
    }
)


class ConfigError(Exception):
    """Raised for an unreadable or invalid configuration."""


@dataclass(frozen=True)
class NotehuntConfig:
    """Resolved settings; every path is absolute."""

    directory_path: Path
    index_path: Path
    state_path: Path
    batch_size: int = DEFAULT_BATCH_SIZE
    extensions: tuple[str, ...] = field(default_factory=tuple)
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    @property
    def state_dir(self) -> Path:
        return self.directory_path / STATE_DIRNAME

    @property
    def excluded_paths(self) -> tuple[Path, ...]:
        """Directories kept out of crawl and watch (our own data, when under the root)."""
        candidates = {self.state_dir, self.index_path, self.state_path.parent}
        return tuple(
            sorted(
                p
                for p in candidates
                if p != self.directory_path and p.is_relative_to(self.directory_path)
            )
        )


def _expand(value: str, root: Path) -> Path:
    """Expand ``~`` and environment variables; resolve relative paths against *root*."""
    path = Path(os.path.expandvars(os.path.expanduser(value)))
    if not path.is_absolute():
        path = root / path
    return Path(os.path.normpath(path))


def _read_config_file(config_path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ConfigError(f"cannot read {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")
    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        raise ConfigError(f"{config_path}: unknown key(s): {', '.join(unknown)}")
    return data


def _positive_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"{key} must be a positive integer, got {value!r}")
    return value


def load_config(
    root: Path | None = None,
    *,
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> NotehuntConfig:
    """Resolve the configuration.

    Precedence: *overrides* (CLI options, ``None`` values ignored) > config
    file > defaults.  The config file is *config_path* if given, otherwise
    ``<root>/.notehunt/config.yml`` when it exists.
    """
    cli = {k: v for k, v in (overrides or {}).items() if v is not None}
    base = Path(root) if root is not None else Path.cwd()

    if config_path is None:
        candidate = base / STATE_DIRNAME / CONFIG_FILENAME
        config_path = candidate if candidate.is_file() else None
    data: dict[str, Any] = _read_config_file(config_path) if config_path is not None else {}
    data.update(cli)

    directory = data.get("directory_path")
    if directory is not None and root is None:
        directory_path = _expand(str(directory), base)
    else:
        directory_path = _expand(str(base), Path.cwd())

    index_path = _expand(
        str(data.get("index_path", Path(STATE_DIRNAME) / "index")), directory_path
    )
    state_path = _expand(
        str(data.get("state_path", Path(STATE_DIRNAME) / "state.db")), directory_path
    )

    raw_extensions = data.get("extensions") or []
    if isinstance(raw_extensions, str):
        raw_extensions = [e for e in raw_extensions.split(",") if e.strip()]
    if not isinstance(raw_extensions, (list, tuple)) or not all(
        isinstance(e, str) for e in raw_extensions
    ):
        raise ConfigError(f"extensions must be a list of strings, got {raw_extensions!r}")

    timeout = data.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError(f"request_timeout must be a positive number, got {timeout!r}")

    return NotehuntConfig(
        directory_path=directory_path,
        index_path=index_path,
        state_path=state_path,
        batch_size=_positive_int(data, "batch_size", DEFAULT_BATCH_SIZE),
        extensions=tuple(e.strip() for e in raw_extensions),
        debounce_ms=_positive_int(data, "debounce_ms", DEFAULT_DEBOUNCE_MS),
        request_timeout=float(timeout),
    )
