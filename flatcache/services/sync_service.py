"""Write-through persistence: row mutations mirrored to canonical files."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Sequence, TYPE_CHECKING

from ..cache import (
    bulk_insert,
    connect,
    create_table,
    delete_by_key,
    fetch_by_key,
    fetch_rows,
    table_exists,
    update_by_key,
)
from ..errors import FlatcacheError, SyncError
from ..events import EventBus, EventKind, RecordEvent
from ..records import Record, RecordHook
from ..schema import Column, SchemaRegistry
from ..storage import Storage
from ..text import Messages
from .loader_service import build_table_blueprint, coerce_row, resolve_missing_columns

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..records import RecordType

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def on_saved(
    record_type: "RecordType",
    record: Record,
    previous: Mapping[str, object] | None = None,
) -> dict[str, object]:
    """Mirror *record* to its canonical file.

    When the path derived from *previous* differs from the current one the old
    file is removed first; if the new file then cannot be written the old one
    is put back. Returns column values the caller must persist without
    triggering another sync.
    """

    new_path = record_type.file_path(record.attributes)
    storage = record_type.storage_for(record.attributes)
    payload = record_type.encode(record.attributes)
    backup: tuple[Storage, str, bytes] | None = None
    if previous:
        old_path = record_type.file_path(previous)
        old_storage = record_type.storage_for(previous)
        if old_path != new_path or old_storage is not storage:
            try:
                content = old_storage.read(old_path)
                removed = old_storage.delete(old_path)
            except OSError as exc:
                raise SyncError(
                    Messages.ERROR_SYNC_DELETE.format(path=old_path, reason=exc),
                    path=old_path,
                ) from exc
            if not removed:
                logger.warning(Messages.WARNING_MISSING_FILE.format(path=old_path))
            elif content is not None:
                backup = (old_storage, old_path, content)
    try:
        storage.write(new_path, payload)
    except OSError as exc:
        if backup is not None:
            _restore(*backup)
        raise SyncError(
            Messages.ERROR_SYNC_WRITE.format(path=new_path, reason=exc),
            path=new_path,
        ) from exc
    return record_type.after_write(record)


def _restore(storage: Storage, path: str, content: bytes) -> None:
    try:
        storage.write(path, content)
    except OSError as exc:
        logger.error(Messages.ERROR_SYNC_RESTORE.format(path=path, reason=exc))


def on_deleted(record_type: "RecordType", record: Record) -> None:
    """Remove the canonical file of *record*; an absent file is only logged."""

    path = record_type.file_path(record.attributes)
    try:
        removed = record_type.storage_for(record.attributes).delete(path)
    except OSError as exc:
        raise SyncError(
            Messages.ERROR_SYNC_DELETE.format(path=path, reason=exc),
            path=path,
        ) from exc
    if not removed:
        logger.warning(Messages.WARNING_MISSING_FILE.format(path=path))
    record_type.after_delete(record)


class RecordRepository:
    """Reads cached rows and persists mutations for one record type."""

    def __init__(
        self,
        record_type: "RecordType",
        *,
        db_path: Path,
        registry: SchemaRegistry,
        events: EventBus | None = None,
        hooks: Sequence[RecordHook] = (),
        timestamps: bool = False,
    ) -> None:
        self.record_type = record_type
        self.db_path = db_path
        self.registry = registry
        self.events = events or EventBus()
        self.hooks = list(hooks)
        self.timestamps = timestamps

    @property
    def table(self) -> str:
        return self.record_type.table

    @property
    def blueprint(self) -> tuple[Column, ...]:
        if not self.registry.has_blueprint(self.table):
            return self.registry.register(
                self.table,
                build_table_blueprint(
                    self.record_type, hooks=self.hooks, timestamps=self.timestamps
                ),
            )
        return self.registry.blueprint(self.table)

    def _connect(self) -> sqlite3.Connection:
        conn = connect(self.db_path)
        if not table_exists(conn, self.table):
            with conn:
                create_table(conn, self.table, self.blueprint)
        return conn

    def _reader(self) -> sqlite3.Connection | None:
        if not self.db_path.exists():
            return None
        conn = connect(self.db_path, readonly=True)
        if not table_exists(conn, self.table):
            conn.close()
            return None
        return conn

    def _hydrate(self, row: Mapping[str, object]) -> Record:
        return Record(self.record_type.name, row, exists=True)

    def find(self, key: object) -> Record | None:
        conn = self._reader()
        if conn is None:
            return None
        try:
            row = fetch_by_key(conn, self.table, key, self.blueprint)
        finally:
            conn.close()
        return self._hydrate(row) if row is not None else None

    def all(self, *, limit: int | None = None) -> list[Record]:
        return self.where(limit=limit)

    def where(self, *, limit: int | None = None, **filters: object) -> list[Record]:
        conn = self._reader()
        if conn is None:
            return []
        try:
            rows = fetch_rows(conn, self.table, self.blueprint, filters=filters, limit=limit)
        except KeyError as exc:
            raise FlatcacheError(str(exc.args[0])) from exc
        finally:
            conn.close()
        return [self._hydrate(row) for row in rows]

    def new(self, attributes: Mapping[str, object] | None = None) -> Record:
        return Record(self.record_type.name, attributes or {})

    def create(self, attributes: Mapping[str, object]) -> Record:
        return self.save(self.new(attributes))

    def save(self, record: Record) -> Record:
        """Persist *record* and mirror it to its file inside one transaction."""

        creating = not record.exists
        blueprint = self.blueprint
        if creating:
            record.attributes = resolve_missing_columns(
                self.record_type.prepare_new(record.attributes), blueprint
            )
        if self.timestamps:
            now = _now()
            if creating:
                record.attributes["created_at"] = now
            record.attributes["updated_at"] = now
        coerce_row(record.attributes, blueprint)
        previous = dict(record.original) if not creating else None
        key = record.get_original("id", record.key) if not creating else record.key

        conn = self._connect()
        try:
            with conn:
                if creating:
                    bulk_insert(conn, self.table, [record.attributes], blueprint)
                elif not update_by_key(conn, self.table, key, record.attributes, blueprint):
                    raise FlatcacheError(
                        Messages.ERROR_RECORD_MISSING.format(key=key, table=self.table)
                    )
                verdicts = [
                    hook.should_create(record) if creating else hook.should_update(record)
                    for hook in self.hooks
                ]
                mirror = all(verdicts)
                if mirror:
                    quiet = on_saved(self.record_type, record, previous)
                    if quiet:
                        update_by_key(conn, self.table, record.key, quiet, blueprint)
                        record.update(quiet)
        finally:
            conn.close()

        record.exists = True
        record.sync_original()
        if mirror:
            self.events.publish(
                RecordEvent(
                    kind=EventKind.CREATED if creating else EventKind.UPDATED,
                    record_type=self.record_type.name,
                    key=record.key,
                    snapshot=record.snapshot(),
                )
            )
        return record

    def delete(self, record: Record) -> bool:
        """Delete the row of *record* and its canonical file."""

        if not record.exists:
            return False
        key = record.get_original("id", record.key)
        conn = self._connect()
        try:
            with conn:
                deleted = delete_by_key(conn, self.table, key)
                verdicts = [hook.should_delete(record) for hook in self.hooks]
                mirror = all(verdicts)
                if mirror:
                    on_deleted(self.record_type, record)
        finally:
            conn.close()

        record.exists = False
        if mirror:
            self.events.publish(
                RecordEvent(
                    kind=EventKind.DELETED,
                    record_type=self.record_type.name,
                    key=key,
                    snapshot=record.snapshot(),
                )
            )
        return bool(deleted)
