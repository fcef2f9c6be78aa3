"""Command line interface for flatcache."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .api import SyncEngine
from .cache import clear_database
from .config import (
    load_config,
    resolve_settings,
    set_batch_size,
    set_content_dir,
    set_multisite,
    set_watcher_enabled,
)
from .errors import FlatcacheError
from .records import available_record_types
from .services.loader_service import LoadStatus
from .text import Messages, Styles
from .utils import ensure_positive, format_path, resolve_directory

console = Console()

app = typer.Typer(
    help=Messages.APP_HELP,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)

SHOW_COLUMNS = {
    "entry": ("id", "collection", "site", "date", "slug", "published"),
    "asset": ("id", "container", "path", "mime_type", "size", "meta_file_exists"),
}


def _styled(text: str, style: str) -> str:
    return f"[{style}]{text}[/{style}]"


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"flatcache v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _validate_record_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in available_record_types():
        allowed = ", ".join(available_record_types())
        raise typer.BadParameter(
            Messages.ERROR_TYPE_INVALID.format(value=value, allowed=allowed)
        )
    return normalized


def _parse_boolean(value: str) -> bool:
    token = value.strip().lower()
    if token in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if token in {"0", "false", "f", "no", "n", "off"}:
        return False
    raise ValueError(Messages.ERROR_BOOLEAN_INVALID.format(value=value))


def _load_engine(content: Path | None) -> SyncEngine:
    if content is not None:
        try:
            content = resolve_directory(content)
        except (FileNotFoundError, NotADirectoryError):
            console.print(
                _styled(Messages.ERROR_CONTENT_MISSING.format(path=content), Styles.ERROR)
            )
            raise typer.Exit(code=1)
    try:
        return SyncEngine.from_config(content_dir=content)
    except FlatcacheError as exc:
        console.print(_styled(str(exc), Styles.ERROR))
        raise typer.Exit(code=1)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    )
) -> None:
    """Global Typer callback for shared options."""
    return None


@app.command()
def rebuild(
    record_type: str | None = typer.Option(
        None,
        "--type",
        "-t",
        help=Messages.HELP_TYPE,
    ),
    force: bool = typer.Option(False, "--force", "-f", help=Messages.HELP_FORCE),
    content: Path | None = typer.Option(
        None,
        "--content",
        "-c",
        help=Messages.HELP_CONTENT,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help=Messages.HELP_VERBOSE),
) -> None:
    """Rebuild cached tables whose files changed since the last rebuild."""
    _configure_logging(verbose)
    names = [_validate_record_type(record_type)] if record_type else available_record_types()
    engine = _load_engine(content)
    for name in names:
        if not force and not engine.should_rebuild(name):
            console.print(_styled(Messages.INFO_REBUILD_CURRENT.format(type=name), Styles.INFO))
            continue
        roots = ", ".join(
            format_path(root, engine.settings.content_dir)
            for root in engine.record_type(name).roots()
        ) or "-"
        console.print(
            _styled(Messages.INFO_REBUILD_RUNNING.format(type=name, path=roots), Styles.INFO)
        )
        try:
            result = engine.rebuild(name)
        except FlatcacheError as exc:
            console.print(_styled(str(exc), Styles.ERROR))
            raise typer.Exit(code=1)
        if result.status == LoadStatus.EMPTY:
            console.print(_styled(Messages.INFO_NO_ROWS.format(type=name), Styles.WARNING))
        else:
            console.print(
                _styled(
                    Messages.INFO_REBUILD_DONE.format(
                        rows=result.rows,
                        type=name,
                        plural="s" if result.rows != 1 else "",
                        batches=len(result.batches),
                        batch_plural="es" if len(result.batches) != 1 else "",
                    ),
                    Styles.SUCCESS,
                )
            )
        if result.skipped:
            console.print(
                _styled(
                    Messages.INFO_REBUILD_SKIPPED.format(
                        count=result.skipped,
                        plural="s" if result.skipped != 1 else "",
                    ),
                    Styles.WARNING,
                )
            )


@app.command()
def status(
    content: Path | None = typer.Option(
        None,
        "--content",
        "-c",
        help=Messages.HELP_CONTENT,
    ),
) -> None:
    """Show every record type with its row count and staleness."""
    engine = _load_engine(content)
    table = Table(
        title=Messages.TABLE_STATUS_TITLE,
        show_header=True,
        header_style=Styles.TABLE_HEADER,
    )
    table.add_column(Messages.TABLE_HEADER_TYPE, no_wrap=True)
    table.add_column(Messages.TABLE_HEADER_TABLE, no_wrap=True)
    table.add_column(Messages.TABLE_HEADER_ROWS, justify="right")
    table.add_column(Messages.TABLE_HEADER_STATE, justify="center")
    for name in available_record_types():
        stale = engine.should_rebuild(name)
        table.add_row(
            name,
            engine.record_type(name).table,
            str(engine.count(name)),
            _styled(Messages.STATE_STALE, Styles.WARNING)
            if stale
            else _styled(Messages.STATE_FRESH, Styles.SUCCESS),
        )
    console.print(table)


@app.command()
def show(
    record_type: str = typer.Argument(..., help=Messages.HELP_TYPE),
    limit: int = typer.Option(20, "--limit", "-n", help=Messages.HELP_SHOW_LIMIT),
    content: Path | None = typer.Option(
        None,
        "--content",
        "-c",
        help=Messages.HELP_CONTENT,
    ),
) -> None:
    """List cached rows for a record type."""
    name = _validate_record_type(record_type)
    try:
        ensure_positive(limit, "limit")
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    engine = _load_engine(content)
    try:
        records = engine.repository(name).all(limit=limit)
    except FlatcacheError as exc:
        console.print(_styled(str(exc), Styles.ERROR))
        raise typer.Exit(code=1)
    if not records:
        console.print(_styled(Messages.INFO_NO_ROWS.format(type=name), Styles.WARNING))
        return
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    columns = SHOW_COLUMNS[name]
    for column in columns:
        table.add_column(column, overflow="fold")
    for record in records:
        table.add_row(*(_format_cell(record.get(column)) for column in columns))
    console.print(table)


@app.command()
def clear(
    content: Path | None = typer.Option(
        None,
        "--content",
        "-c",
        help=Messages.HELP_CONTENT,
    ),
) -> None:
    """Remove the cache database; the next rebuild starts from scratch."""
    engine = _load_engine(content)
    db_path = engine.db_path
    if clear_database(db_path):
        console.print(_styled(Messages.INFO_CACHE_CLEARED.format(path=db_path), Styles.SUCCESS))
    else:
        console.print(_styled(Messages.INFO_CACHE_CLEAR_NONE.format(path=db_path), Styles.WARNING))


@app.command()
def config(
    show_config: bool = typer.Option(False, "--show", help=Messages.HELP_SHOW_CONFIG),
    set_content_option: str | None = typer.Option(
        None,
        "--set-content",
        help=Messages.HELP_SET_CONTENT,
    ),
    set_batch_option: int | None = typer.Option(
        None,
        "--set-batch-size",
        help=Messages.HELP_SET_BATCH,
    ),
    set_watcher_option: str | None = typer.Option(
        None,
        "--set-watcher",
        help=Messages.HELP_SET_WATCHER,
    ),
    set_multisite_option: str | None = typer.Option(
        None,
        "--set-multisite",
        help=Messages.HELP_SET_MULTISITE,
    ),
) -> None:
    """Manage flatcache configuration stored in ~/.flatcache/config.json."""
    if set_batch_option is not None and set_batch_option < 1:
        raise typer.BadParameter(Messages.ERROR_BATCH_INVALID)
    try:
        watcher = _parse_boolean(set_watcher_option) if set_watcher_option is not None else None
        multisite = (
            _parse_boolean(set_multisite_option) if set_multisite_option is not None else None
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    changed = False
    if set_content_option is not None:
        set_content_dir(set_content_option)
        changed = True
    if set_batch_option is not None:
        set_batch_size(set_batch_option)
        changed = True
    if watcher is not None:
        set_watcher_enabled(watcher)
        changed = True
    if multisite is not None:
        set_multisite(multisite)
        changed = True
    if changed:
        console.print(_styled(Messages.INFO_CONFIG_SAVED, Styles.SUCCESS))

    if show_config or not changed:
        try:
            cfg = load_config()
        except ValueError as exc:
            console.print(_styled(str(exc), Styles.ERROR))
            raise typer.Exit(code=1)
        settings = resolve_settings(cfg)
        containers = ", ".join(
            f"{handle}={directory}" for handle, directory in settings.asset_containers.items()
        )
        console.print(
            _styled(
                Messages.INFO_CONFIG_SUMMARY.format(
                    content=settings.content_dir,
                    database=settings.database,
                    batch=settings.batch_size,
                    concurrency=settings.read_concurrency,
                    watcher="yes" if settings.watcher_enabled else "no",
                    always="yes" if settings.always_rebuild else "no",
                    multisite="yes" if settings.multisite else "no",
                    timestamps="yes" if settings.timestamps else "no",
                    containers=containers or "-",
                    excludes=", ".join(settings.exclude_patterns) or "-",
                ),
                Styles.INFO,
            )
        )


def _format_cell(value: object) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


def run(argv: list[str] | None = None) -> None:
    """Entry point wrapper allowing optional argument override."""
    args = list(argv) if argv is not None else sys.argv[1:]
    if argv is None:
        app()
    else:
        app(args=args)
