"""Decide whether a record type's cached table must be rebuilt."""

from __future__ import annotations

import inspect
import logging
from pathlib import Path
from typing import Sequence, TYPE_CHECKING

from ..cache import connect, database_mtime, has_table, list_columns
from ..utils import newest_mtime

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..config import Settings
    from ..records import RecordType
    from ..schema import Column

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"


def should_restore_cache(directory: Path, db_path: Path, watcher_enabled: bool) -> bool:
    """Return True when anything under *directory* is newer than the database.

    A disabled watcher never asks for a restore. A missing directory counts as
    unchanged, a missing database as outdated.
    """

    if not watcher_enabled:
        return False
    newest = newest_mtime(directory)
    if newest is None:
        return False
    db_mtime = database_mtime(db_path)
    if db_mtime is None:
        return True
    return newest > db_mtime


def definition_mtime(record_type: "RecordType") -> float | None:
    source = inspect.getsourcefile(type(record_type))
    if source is None:
        return None
    return database_mtime(Path(source))


def stored_columns(db_path: Path, table: str) -> list[str]:
    conn = connect(db_path, readonly=True)
    try:
        return list_columns(conn, table)
    finally:
        conn.close()


def should_rebuild(
    record_type: "RecordType",
    roots: Sequence[Path] | None = None,
    *,
    db_path: Path,
    settings: "Settings",
    blueprint: Sequence["Column"] | None = None,
) -> bool:
    """Return True when the cache for *record_type* cannot be trusted.

    When *blueprint* is given, a stored table whose columns differ from it
    (for example after a hook contributed a column) also needs a rebuild.
    """

    if settings.always_rebuild:
        logger.debug("rebuild %s: always_rebuild is set", record_type.name)
        return True
    if str(db_path) == MEMORY_DATABASE:
        return True
    db_mtime = database_mtime(db_path)
    if db_mtime is None:
        logger.debug("rebuild %s: database %s is missing", record_type.name, db_path)
        return True
    source_mtime = definition_mtime(record_type)
    if source_mtime is not None and source_mtime > db_mtime:
        logger.debug("rebuild %s: record type definition changed", record_type.name)
        return True
    for root in roots if roots is not None else record_type.roots():
        if should_restore_cache(Path(root), db_path, settings.watcher_enabled):
            logger.debug("rebuild %s: files under %s changed", record_type.name, root)
            return True
    if not has_table(db_path, record_type.table):
        logger.debug("rebuild %s: table %s is missing", record_type.name, record_type.table)
        return True
    if blueprint is not None:
        expected = [column.name for column in blueprint]
        if stored_columns(db_path, record_type.table) != expected:
            logger.debug("rebuild %s: table columns changed", record_type.name)
            return True
    return False
