"""Column definitions and the per-engine schema registry."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Iterable, Sequence

TIMESTAMP_COLUMNS = ("created_at", "updated_at")


class ColumnType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    JSON = "json"


_SQL_TYPES = {
    ColumnType.STRING: "TEXT",
    ColumnType.INTEGER: "INTEGER",
    ColumnType.BOOLEAN: "INTEGER",
    ColumnType.DATETIME: "TEXT",
    ColumnType.JSON: "TEXT",
}


@dataclass(frozen=True, slots=True)
class Column:
    name: str
    type: ColumnType = ColumnType.STRING
    default: object = None
    nullable: bool = False
    unique: bool = False
    index: bool = False

    @property
    def sql_type(self) -> str:
        return _SQL_TYPES[self.type]

    def has_default(self) -> bool:
        return self.default is not None


def timestamp_columns() -> tuple[Column, ...]:
    return tuple(
        Column(name, ColumnType.DATETIME, nullable=True) for name in TIMESTAMP_COLUMNS
    )


def build_blueprint(
    columns: Sequence[Column],
    *,
    extra: Iterable[Column] = (),
    timestamps: bool = False,
) -> tuple[Column, ...]:
    """Merge declared, contributed and timestamp columns into one ordered list.

    Later definitions with an already-declared name are ignored so a record
    type's own columns always win over contributed ones.
    """

    merged: dict[str, Column] = {}
    for column in (*columns, *extra, *(timestamp_columns() if timestamps else ())):
        merged.setdefault(column.name, column)
    return tuple(merged.values())


class SchemaRegistry:
    """Blueprints per table, owned by a single engine."""

    def __init__(self) -> None:
        self._blueprints: dict[str, tuple[Column, ...]] = {}
        self._lock = Lock()

    def register(self, table: str, blueprint: Sequence[Column]) -> tuple[Column, ...]:
        frozen = tuple(blueprint)
        with self._lock:
            self._blueprints[table] = frozen
        return frozen

    def has_blueprint(self, table: str) -> bool:
        return table in self._blueprints

    def blueprint(self, table: str) -> tuple[Column, ...]:
        try:
            return self._blueprints[table]
        except KeyError as exc:
            raise KeyError(f"No blueprint registered for table: {table}") from exc

    def forget(self, table: str) -> None:
        with self._lock:
            self._blueprints.pop(table, None)
