"""Logic helpers for rebuilding a record type's table from its files."""

from __future__ import annotations

import copy
import logging
from datetime import date
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Sequence, TYPE_CHECKING

from ..cache import (
    _chunk_values,
    bulk_insert,
    connect,
    encode_value,
    recreate_table,
    update_by_key,
)
from ..config import DEFAULT_BATCH_SIZE
from ..errors import DecodeError, SchemaError
from ..records import DEFERRED_KEY, RecordHook, SourceFile
from ..schema import Column, ColumnType, SchemaRegistry, build_blueprint
from ..text import Messages

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..records import RecordType

logger = logging.getLogger(__name__)


class LoadStatus(str, Enum):
    EMPTY = "empty"
    LOADED = "loaded"


@dataclass(slots=True)
class LoadResult:
    status: LoadStatus
    table: str
    rows: int = 0
    skipped: int = 0
    patched: int = 0
    batches: list[int] = field(default_factory=list)


def build_table_blueprint(
    record_type: "RecordType",
    *,
    hooks: Sequence[RecordHook] = (),
    timestamps: bool = False,
) -> tuple[Column, ...]:
    """Merge the type's columns with hook contributions and timestamps."""

    contributed = [column for hook in hooks for column in hook.columns()]
    return build_blueprint(record_type.columns(), extra=contributed, timestamps=timestamps)


def resolve_missing_columns(
    row: dict[str, object],
    blueprint: Sequence[Column],
    *,
    path: str | None = None,
) -> dict[str, object]:
    """Fill absent columns from *blueprint*; raise when a required one has no value."""

    for column in blueprint:
        if row.get(column.name) is not None:
            continue
        if column.has_default():
            row[column.name] = copy.deepcopy(column.default)
        elif column.nullable:
            row[column.name] = None
        else:
            raise SchemaError(
                Messages.ERROR_COLUMN_MISSING.format(column=column.name, path=path),
                column=column.name,
                path=path,
            )
    return row


def _coerce_value(column: Column, value: object) -> object:
    kind = column.type
    if kind is ColumnType.STRING:
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise TypeError(value)
        return str(value)
    if kind is ColumnType.INTEGER:
        if isinstance(value, bool):
            raise TypeError(value)
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(value)
        if isinstance(value, str):
            return int(value.strip())
        if not isinstance(value, (int, float)):
            raise TypeError(value)
        return int(value)
    if kind is ColumnType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise TypeError(value)
    if kind is ColumnType.DATETIME:
        if isinstance(value, date):
            return value.isoformat()
        if not isinstance(value, str):
            raise TypeError(value)
        return value
    encode_value(column, value)
    return value


def coerce_row(
    row: dict[str, object],
    blueprint: Sequence[Column],
    *,
    path: str | None = None,
) -> dict[str, object]:
    """Convert declared column values to their column type; raise when one cannot be."""

    for column in blueprint:
        value = row.get(column.name)
        if value is None:
            continue
        try:
            row[column.name] = _coerce_value(column, value)
        except (TypeError, ValueError) as exc:
            raise SchemaError(
                Messages.ERROR_COLUMN_TYPE.format(
                    column=column.name, type=column.type.value, value=value, path=path
                ),
                column=column.name,
                path=path,
            ) from exc
    return row


def _decode_one(
    record_type: "RecordType",
    source: SourceFile,
    blueprint: Sequence[Column],
) -> dict | Exception | None:
    try:
        return record_type.load(source, blueprint=blueprint)
    except (DecodeError, OSError) as exc:
        return exc


def _decode_sources(
    record_type: "RecordType",
    sources: Sequence[SourceFile],
    *,
    blueprint: Sequence[Column],
    concurrency: int,
) -> list[dict | Exception | None]:
    if not sources:
        return []
    concurrency = max(int(concurrency or 1), 1)
    if concurrency <= 1 or len(sources) <= 1:
        return [_decode_one(record_type, source, blueprint) for source in sources]
    max_workers = min(concurrency, len(sources))
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(
            executor.map(lambda source: _decode_one(record_type, source, blueprint), sources)
        )


def rebuild(
    record_type: "RecordType",
    *,
    db_path: Path,
    registry: SchemaRegistry,
    hooks: Sequence[RecordHook] = (),
    batch_size: int = DEFAULT_BATCH_SIZE,
    read_concurrency: int = 1,
    timestamps: bool = False,
) -> LoadResult:
    """Drop, recreate and repopulate the table backing *record_type*."""

    batch_size = max(int(batch_size or DEFAULT_BATCH_SIZE), 1)
    table = record_type.table
    blueprint = registry.register(
        table,
        build_table_blueprint(record_type, hooks=hooks, timestamps=timestamps),
    )
    sources = record_type.sources()
    decoded = _decode_sources(
        record_type,
        sources,
        blueprint=blueprint,
        concurrency=read_concurrency,
    )

    rows: list[dict[str, object]] = []
    seen: set[object] = set()
    skipped = 0
    for source, outcome in zip(sources, decoded):
        if outcome is None:
            logger.warning("skipping %s: file disappeared during rebuild", source.read_from)
            skipped += 1
            continue
        if isinstance(outcome, Exception):
            logger.warning("skipping %s: %s", source.read_from, outcome)
            skipped += 1
            continue
        try:
            row = resolve_missing_columns(outcome, blueprint, path=source.rel_path)
            row = coerce_row(row, blueprint, path=source.rel_path)
        except SchemaError as exc:
            logger.warning("skipping %s: %s", source.read_from, exc)
            skipped += 1
            continue
        if row["id"] in seen:
            logger.warning("skipping %s: duplicate id %s", source.read_from, row["id"])
            skipped += 1
            continue
        seen.add(row["id"])
        deferred = record_type.deferred(row)
        if deferred is not None:
            row[DEFERRED_KEY] = deferred
        rows.append(row)

    batches: list[int] = []
    patched = 0
    conn = connect(db_path)
    try:
        recreate_table(conn, table, blueprint)
        for batch in _chunk_values(rows, batch_size):
            payload = [
                {key: value for key, value in row.items() if key != DEFERRED_KEY}
                for row in batch
            ]
            with conn:
                bulk_insert(conn, table, payload, blueprint)
            batches.append(len(payload))
            with conn:
                for row in batch:
                    deferred = row.get(DEFERRED_KEY)
                    if deferred is None:
                        continue
                    values = deferred()
                    if values:
                        update_by_key(conn, table, row["id"], values, blueprint)
                        patched += 1
    finally:
        conn.close()

    logger.info(
        "rebuilt %s: %d rows in %d batches, %d skipped, %d patched",
        table,
        len(rows),
        len(batches),
        skipped,
        patched,
    )
    return LoadResult(
        status=LoadStatus.LOADED if rows else LoadStatus.EMPTY,
        table=table,
        rows=len(rows),
        skipped=skipped,
        patched=patched,
        batches=batches,
    )
