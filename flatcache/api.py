"""Public Python API for flatcache."""

from __future__ import annotations

from collections.abc import Mapping
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Callable, Sequence

from .cache import cache_dir_context, connect, count_rows, set_cache_dir
from .config import (
    Config,
    Settings,
    config_dir_context,
    load_config,
    resolve_settings,
    set_config_dir,
)
from .errors import (
    DecodeError,
    FlatcacheError,
    PathDecodeError,
    SchemaError,
    SyncError,
)
from .events import EventBus, RecordEvent
from .records import (
    Record,
    RecordHook,
    RecordType,
    available_record_types,
    build_record_types,
    get_record_type,
)
from .schema import SchemaRegistry
from .services.loader_service import LoadResult, build_table_blueprint, rebuild
from .services.meta_service import MetaCache
from .services.staleness_service import should_rebuild
from .services.sync_service import RecordRepository
from .text import Messages

__all__ = [
    "DecodeError",
    "FlatcacheError",
    "PathDecodeError",
    "SchemaError",
    "SyncEngine",
    "SyncError",
    "data_dir_context",
    "set_data_dir",
]


@contextmanager
def data_dir_context(
    data_dir: Path | str | None,
    *,
    config_dir: Path | str | None = None,
    cache_dir: Path | str | None = None,
):
    """Temporarily point config and cache lookups at other directories."""

    if data_dir is None and config_dir is None and cache_dir is None:
        yield
        return
    effective_config_dir = config_dir if config_dir is not None else data_dir
    effective_cache_dir = cache_dir if cache_dir is not None else data_dir
    with ExitStack() as stack:
        if effective_config_dir is not None:
            stack.enter_context(config_dir_context(effective_config_dir))
        if effective_cache_dir is not None:
            stack.enter_context(cache_dir_context(effective_cache_dir))
        yield


def set_data_dir(path: Path | str | None) -> None:
    """Set the base directory for config and cache data."""
    set_config_dir(path)
    set_cache_dir(path)


class SyncEngine:
    """Owns the schema registry, meta cache and event bus for one content tree."""

    def __init__(
        self,
        settings: Settings,
        *,
        hooks: Mapping[str, Sequence[RecordHook]] | None = None,
    ) -> None:
        self.settings = settings
        self.registry = SchemaRegistry()
        self.meta_cache = MetaCache()
        self.events = EventBus()
        self.record_types: dict[str, RecordType] = build_record_types(
            settings, self.meta_cache
        )
        self._hooks: dict[str, list[RecordHook]] = {name: [] for name in self.record_types}
        for name, registered in (hooks or {}).items():
            for hook in registered:
                self.add_hook(name, hook)

    @classmethod
    def from_config(
        cls,
        config: Config | None = None,
        *,
        content_dir: Path | str | None = None,
        hooks: Mapping[str, Sequence[RecordHook]] | None = None,
    ) -> "SyncEngine":
        """Build an engine from *config* (or the saved config file)."""

        try:
            effective = config if config is not None else load_config()
        except ValueError as exc:
            raise FlatcacheError(str(exc)) from exc
        return cls(resolve_settings(effective, content_dir=content_dir), hooks=hooks)

    @property
    def db_path(self) -> Path:
        return self.settings.database

    def record_type(self, name: str) -> RecordType:
        try:
            return get_record_type(self.record_types, name)
        except ValueError as exc:
            allowed = ", ".join(available_record_types())
            raise FlatcacheError(
                Messages.ERROR_TYPE_INVALID.format(value=name, allowed=allowed)
            ) from exc

    def add_hook(self, name: str, hook: RecordHook) -> None:
        self.record_type(name)
        self._hooks[name].append(hook)
        # Contributed columns change the blueprint; the next rebuild registers it again.
        self.registry.forget(self.record_types[name].table)

    def hooks(self, name: str) -> list[RecordHook]:
        self.record_type(name)
        return list(self._hooks[name])

    def subscribe(self, listener: Callable[[RecordEvent], None]) -> Callable[[], None]:
        return self.events.subscribe(listener)

    def should_rebuild(self, name: str) -> bool:
        record_type = self.record_type(name)
        return should_rebuild(
            record_type,
            record_type.roots(),
            db_path=self.db_path,
            settings=self.settings,
            blueprint=build_table_blueprint(
                record_type, hooks=self._hooks[name], timestamps=self.settings.timestamps
            ),
        )

    def rebuild(self, name: str) -> LoadResult:
        record_type = self.record_type(name)
        return rebuild(
            record_type,
            db_path=self.db_path,
            registry=self.registry,
            hooks=self._hooks[name],
            batch_size=self.settings.batch_size,
            read_concurrency=self.settings.read_concurrency,
            timestamps=self.settings.timestamps,
        )

    def ensure_fresh(
        self,
        names: Sequence[str] | None = None,
        *,
        force: bool = False,
    ) -> dict[str, LoadResult | None]:
        """Rebuild every requested type whose cache is stale.

        Returns a mapping of type name to its :class:`LoadResult`, or None when
        the cached table was already current.
        """

        results: dict[str, LoadResult | None] = {}
        for name in names or available_record_types():
            if force or self.should_rebuild(name):
                results[name] = self.rebuild(name)
            else:
                results[name] = None
        return results

    def repository(self, name: str) -> RecordRepository:
        record_type = self.record_type(name)
        return RecordRepository(
            record_type,
            db_path=self.db_path,
            registry=self.registry,
            events=self.events,
            hooks=self._hooks[name],
            timestamps=self.settings.timestamps,
        )

    def count(self, name: str) -> int:
        record_type = self.record_type(name)
        if not self.db_path.exists():
            return 0
        conn = connect(self.db_path)
        try:
            return count_rows(conn, record_type.table)
        finally:
            conn.close()

    def new_record(self, name: str, attributes: Mapping[str, object] | None = None) -> Record:
        return self.repository(name).new(attributes)
