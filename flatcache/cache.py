"""Relational cache helpers for flatcache backed by SQLite."""

from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from .schema import Column, ColumnType

DEFAULT_CACHE_DIR = Path(os.path.expanduser("~")) / ".flatcache"
CACHE_DIR = DEFAULT_CACHE_DIR
_CACHE_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "flatcache_cache_dir_override",
    default=None,
)
DB_FILENAME = "cache.db"
KEY_COLUMN = "id"


def _chunk_values(values: Sequence[object], size: int) -> Iterable[Sequence[object]]:
    for idx in range(0, len(values), size):
        yield values[idx : idx + size]


def _resolve_cache_dir() -> Path:
    override = _CACHE_DIR_OVERRIDE.get()
    return override if override is not None else CACHE_DIR


@contextmanager
def cache_dir_context(path: Path | str | None):
    """Temporarily override the cache directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _CACHE_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _CACHE_DIR_OVERRIDE.reset(token)


def ensure_cache_dir() -> Path:
    cache_dir = _resolve_cache_dir()
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def set_cache_dir(path: Path | str | None) -> None:
    global CACHE_DIR
    if path is None:
        CACHE_DIR = DEFAULT_CACHE_DIR
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    CACHE_DIR = dir_path


def cache_db_path() -> Path:
    """Return the absolute path to the shared SQLite cache database."""

    cache_dir = ensure_cache_dir()
    return cache_dir / DB_FILENAME


def database_mtime(db_path: Path) -> float | None:
    """Return the modification time of *db_path*, or None when it does not exist."""

    try:
        return db_path.stat().st_mtime
    except (FileNotFoundError, NotADirectoryError):
        return None


def connect(db_path: Path, *, readonly: bool = False) -> sqlite3.Connection:
    if readonly:
        db_uri = f"file:{db_path.as_posix()}?mode=ro"
        conn = sqlite3.connect(db_uri, uri=True, check_same_thread=False)
    else:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.OperationalError as exc:
        if "readonly" not in str(exc).lower():
            raise
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute("PRAGMA temp_store = MEMORY;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    if readonly:
        conn.execute("PRAGMA query_only = ON;")
    return conn


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _json_default(value: object) -> object:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_value(column: Column | None, value: object) -> object:
    """Convert a Python attribute value into its SQLite representation."""

    if value is None:
        return None
    kind = column.type if column is not None else None
    if kind is ColumnType.JSON or (kind is None and isinstance(value, (dict, list))):
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False, default=_json_default)
    if kind is ColumnType.BOOLEAN or isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if kind is ColumnType.INTEGER and isinstance(value, str):
        cleaned = value.strip()
        return int(cleaned) if cleaned else None
    return value


def decode_value(column: Column | None, value: object) -> object:
    """Convert a stored SQLite value back into its Python attribute value."""

    if value is None or column is None:
        return value
    if column.type is ColumnType.JSON and isinstance(value, str):
        return json.loads(value) if value else None
    if column.type is ColumnType.BOOLEAN:
        return bool(value)
    return value


def _sql_literal(column: Column) -> str:
    value = encode_value(column, column.default)
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


def has_table(db_path: Path, table: str) -> bool:
    """Return True when *table* exists in the database at *db_path*."""

    if not db_path.exists():
        return False
    conn = connect(db_path, readonly=True)
    try:
        return table_exists(conn, table)
    finally:
        conn.close()


def list_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    rows = conn.execute(f"PRAGMA table_info({_quote(table)})").fetchall()
    return [row["name"] for row in rows]


def drop_table(conn: sqlite3.Connection, table: str) -> None:
    conn.execute(f"DROP TABLE IF EXISTS {_quote(table)}")


def create_table(conn: sqlite3.Connection, table: str, blueprint: Sequence[Column]) -> None:
    definitions: list[str] = []
    for column in blueprint:
        parts = [_quote(column.name), column.sql_type]
        if not column.nullable:
            parts.append("NOT NULL")
        if column.unique:
            parts.append("UNIQUE")
        if column.has_default():
            parts.append(f"DEFAULT {_sql_literal(column)}")
        definitions.append(" ".join(parts))
    conn.execute(f"CREATE TABLE {_quote(table)} ({', '.join(definitions)})")
    for column in blueprint:
        if column.index and not column.unique:
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS {_quote(f'idx_{table}_{column.name}')} "
                f"ON {_quote(table)}({_quote(column.name)})"
            )


def recreate_table(conn: sqlite3.Connection, table: str, blueprint: Sequence[Column]) -> None:
    """Drop *table* when present and create it again from *blueprint*."""

    with conn:
        drop_table(conn, table)
        create_table(conn, table, blueprint)


def bulk_insert(
    conn: sqlite3.Connection,
    table: str,
    rows: Sequence[Mapping[str, object]],
    blueprint: Sequence[Column],
) -> int:
    """Insert *rows* with one statement per call; callers own the transaction."""

    if not rows:
        return 0
    names = [column.name for column in blueprint]
    placeholders = ", ".join("?" for _ in names)
    conn.executemany(
        f"INSERT INTO {_quote(table)} ({', '.join(_quote(name) for name in names)}) "
        f"VALUES ({placeholders})",
        [
            tuple(encode_value(column, row.get(column.name)) for column in blueprint)
            for row in rows
        ],
    )
    return len(rows)


def update_by_key(
    conn: sqlite3.Connection,
    table: str,
    key: object,
    values: Mapping[str, object],
    blueprint: Sequence[Column],
    *,
    key_column: str = KEY_COLUMN,
) -> int:
    definitions = {column.name: column for column in blueprint}
    assignments = [name for name in values if name in definitions]
    if not assignments:
        return 0
    cursor = conn.execute(
        f"UPDATE {_quote(table)} SET "
        + ", ".join(f"{_quote(name)} = ?" for name in assignments)
        + f" WHERE {_quote(key_column)} = ?",
        (*(encode_value(definitions[name], values[name]) for name in assignments), key),
    )
    return cursor.rowcount


def delete_by_key(
    conn: sqlite3.Connection,
    table: str,
    key: object,
    *,
    key_column: str = KEY_COLUMN,
) -> int:
    cursor = conn.execute(
        f"DELETE FROM {_quote(table)} WHERE {_quote(key_column)} = ?",
        (key,),
    )
    return cursor.rowcount


def _hydrate(row: sqlite3.Row, definitions: Mapping[str, Column]) -> dict[str, object]:
    return {name: decode_value(definitions.get(name), row[name]) for name in row.keys()}


def fetch_by_key(
    conn: sqlite3.Connection,
    table: str,
    key: object,
    blueprint: Sequence[Column],
    *,
    key_column: str = KEY_COLUMN,
) -> dict[str, object] | None:
    row = conn.execute(
        f"SELECT * FROM {_quote(table)} WHERE {_quote(key_column)} = ?",
        (key,),
    ).fetchone()
    if row is None:
        return None
    return _hydrate(row, {column.name: column for column in blueprint})


def fetch_rows(
    conn: sqlite3.Connection,
    table: str,
    blueprint: Sequence[Column],
    *,
    filters: Mapping[str, object] | None = None,
    limit: int | None = None,
) -> list[dict[str, object]]:
    definitions = {column.name: column for column in blueprint}
    clauses: list[str] = []
    params: list[object] = []
    for name, value in (filters or {}).items():
        if name not in definitions:
            raise KeyError(f"Unknown column: {name}")
        if value is None:
            clauses.append(f"{_quote(name)} IS NULL")
            continue
        clauses.append(f"{_quote(name)} = ?")
        params.append(encode_value(definitions[name], value))
    query = f"SELECT * FROM {_quote(table)}"
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY rowid ASC"
    if limit is not None:
        query += " LIMIT ?"
        params.append(int(limit))
    return [_hydrate(row, definitions) for row in conn.execute(query, params).fetchall()]


def count_rows(conn: sqlite3.Connection, table: str) -> int:
    if not table_exists(conn, table):
        return 0
    row = conn.execute(f"SELECT COUNT(*) AS total FROM {_quote(table)}").fetchone()
    return int(row["total"] if row is not None else 0)


def clear_database(db_path: Path) -> bool:
    """Remove the cache database and its WAL sidecars."""

    if not db_path.exists():
        return False
    db_path.unlink()
    for suffix in ("-wal", "-shm"):
        sidecar = Path(f"{db_path}{suffix}")
        if sidecar.exists():
            sidecar.unlink()
    return True
