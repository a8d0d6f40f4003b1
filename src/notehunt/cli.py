"""Notehunt CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, NoReturn, TypeVar

import click

from notehunt import __version__
from notehunt.config import ConfigError, load_config
from notehunt.events.bridge import BridgeError
from notehunt.search.index import SearchIndex, SearchIndexError
from notehunt.service import NotehuntService
from notehunt.sync.crawler import CrawlError
from notehunt.sync.store import StoreError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from notehunt.config import NotehuntConfig

F = TypeVar("F", bound=Callable[..., Any])

_FATAL_ERRORS = (ConfigError, CrawlError, StoreError, BridgeError, SearchIndexError)


@click.group()
@click.version_option(version=__version__, prog_name="notehunt")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """Notehunt - keeps a search index in sync with a directory of notes."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    level = logging.WARNING
    if verbose:
        level = logging.INFO
    if quiet:
        level = logging.ERROR
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _common_options(func: F) -> F:
    func = click.option(
        "--config",
        "config_path",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        default=None,
        help="Config file (default: <root>/.notehunt/config.yml).",
    )(func)
    func = click.option(
        "--root",
        type=click.Path(file_okay=False, path_type=Path),
        default=None,
        help="Watched directory (default: from config or current directory).",
    )(func)
    return func


def _fail(exc: Exception) -> NoReturn:
    click.echo(f"Error: {exc}", err=True)
    sys.exit(1)


def _load(root: Path | None, config_path: Path | None, **overrides: Any) -> NotehuntConfig:
    try:
        return load_config(root, config_path=config_path, overrides=overrides)
    except ConfigError as exc:
        _fail(exc)


@contextmanager
def _running(config: NotehuntConfig) -> Iterator[NotehuntService]:
    service = NotehuntService(config)
    try:
        service.start()
        yield service
    except _FATAL_ERRORS as exc:
        _fail(exc)
    finally:
        service.stop()


@main.command()
@_common_options
@click.option(
    "--extensions",
    default=None,
    help="Comma-separated extension allowlist, e.g. '.md,.txt'.",
)
def scan(*, root: Path | None, config_path: Path | None, extensions: str | None) -> None:
    """Crawl the directory and reconcile the recorded file states."""
    config = _load(root, config_path, extensions=extensions)
    with _running(config) as service:
        result = service.scan()
        counts = service.status_counts()

    click.echo(
        f"Scanned {config.directory_path}: "
        f"{result.observed} file(s), {result.errors} error(s)"
    )
    click.echo("  " + ", ".join(f"{s.value}: {n}" for s, n in counts.items()))


@main.command()
@_common_options
@click.option("--batch-size", type=int, default=None, help="Files per completion batch.")
def index(*, root: Path | None, config_path: Path | None, batch_size: int | None) -> None:
    """Index every Pending file into the search index."""
    config = _load(root, config_path, batch_size=batch_size)
    with _running(config) as service:
        result = service.index()

    click.echo(
        f"Indexed {result.indexed} of {result.requested} file(s) "
        f"in {result.batches} batch(es), {result.failed} failed"
    )


@main.command("watch")
@_common_options
@click.option("--debounce", type=int, default=None, help="Debounce delay in ms.")
def watch_cmd(*, root: Path | None, config_path: Path | None, debounce: int | None) -> None:
    """Scan, index, then keep the index in sync with live changes.

    Press Ctrl+C to stop.
    """
    from notehunt.sync.watcher import WatcherError

    config = _load(root, config_path, debounce_ms=debounce)
    stop_event = threading.Event()
    with _running(config) as service:
        click.echo(f"Watching {config.directory_path} (Ctrl+C to stop)")
        try:
            service.watch(stop_event)
        except KeyboardInterrupt:
            stop_event.set()
            click.echo("Stopped.")
        except WatcherError as exc:
            _fail(exc)


@main.command()
@_common_options
@click.argument("query")
@click.option("--limit", default=10, type=int, help="Max results.")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
def search(
    query: str,
    *,
    root: Path | None,
    config_path: Path | None,
    limit: int,
    output_json: bool,
) -> None:
    """Search indexed notes by keyword."""
    from notehunt.search.index import INDEX_FILENAME

    config = _load(root, config_path)
    if not (config.index_path / INDEX_FILENAME).exists():
        click.echo("Error: search index not found. Run `notehunt index` first.", err=True)
        sys.exit(1)

    try:
        search_index = SearchIndex.open(config.index_path)
        try:
            hits = search_index.search(query, limit=limit)
        finally:
            search_index.close()
    except SearchIndexError as exc:
        _fail(exc)

    if output_json:
        data = [{"path": h.path, "snippet": h.snippet, "rank": h.rank} for h in hits]
        click.echo(json.dumps(data, ensure_ascii=False, indent=2))
        return

    if not hits:
        click.echo("No results found.")
        return
    for hit in hits:
        click.echo(f"  {hit.path}")
        if hit.snippet:
            click.echo(f"    {hit.snippet}")


@main.command()
@_common_options
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
def status(*, root: Path | None, config_path: Path | None, output_json: bool) -> None:
    """Show how many files are in each state."""
    config = _load(root, config_path)
    with _running(config) as service:
        counts = service.status_counts()
        last_crawl = service.last_crawl_at()

    total = sum(counts.values())
    if output_json:
        data = {
            "directory": str(config.directory_path),
            "last_crawl_at": last_crawl,
            "total": total,
            "by_status": {s.value: n for s, n in counts.items()},
        }
        click.echo(json.dumps(data, ensure_ascii=False, indent=2))
        return

    from rich.console import Console
    from rich.table import Table

    console = Console()
    table = Table(
        title=f"Notehunt v{__version__}: {config.directory_path}",
        caption=f"Last crawl: {last_crawl or 'never'}",
    )
    table.add_column("Status", style="cyan")
    table.add_column("Files", justify="right")
    for file_status, n in counts.items():
        table.add_row(file_status.value, str(n))
    table.add_row("[bold]Total[/]", f"[bold]{total}[/]")
    console.print(table)


@main.command()
@_common_options
@click.argument("paths", nargs=-1, type=click.Path(path_type=Path))
def requeue(*, root: Path | None, config_path: Path | None, paths: tuple[Path, ...]) -> None:
    """Mark files Pending again so the next index run re-reads them.

    Without PATHS every Complete file is requeued.
    """
    config = _load(root, config_path)
    with _running(config) as service:
        before = service.status_counts()
        service.requeue(paths or None)
        after = service.status_counts()

    from notehunt.sync.models import FileStatus

    moved = after[FileStatus.PENDING] - before[FileStatus.PENDING]
    click.echo(f"Requeued {moved} file(s)")


@main.command()
@_common_options
def purge(*, root: Path | None, config_path: Path | None) -> None:
    """Physically remove records of deleted files."""
    from notehunt.sync.models import FileStatus

    config = _load(root, config_path)
    with _running(config) as service:
        removed = service.status_counts()[FileStatus.DELETED]
        service.purge()

    click.echo(f"Purged {removed} deleted record(s)")
