"""Record types: path decoding, file decoding and encoding per kind of content."""

from __future__ import annotations

import copy
import mimetypes
import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path, PurePosixPath
from typing import Callable, Mapping, Protocol, Sequence, TYPE_CHECKING

from . import codec
from .errors import FlatcacheError, PathDecodeError
from .schema import Column, ColumnType
from .services.meta_service import MetaCache, meta_cache_key, trim_meta
from .storage import LocalStorage, Storage
from .text import Messages
from .utils import meta_path, strip_extension

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .config import Settings

DATA_COLUMN = "data"
DEFERRED_KEY = "update_after_insert"
READ_FROM_COLUMN = "file_path_read_from"
DEFAULT_SITE = "default"
META_EXTENSION = "yaml"

_DATE_TOKEN_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:-(\d{2})(\d{2}))?$")

Deferred = Callable[[], "Mapping[str, object] | None"]


@dataclass(frozen=True, slots=True)
class SourceFile:
    rel_path: str
    read_from: str
    container: str | None = None


class Record:
    """A cache row plus the attribute values it was last persisted with."""

    def __init__(
        self,
        record_type: str,
        attributes: Mapping[str, object] | None = None,
        *,
        exists: bool = False,
    ) -> None:
        self.record_type = record_type
        self.attributes: dict[str, object] = dict(attributes or {})
        self.original: dict[str, object] = copy.deepcopy(self.attributes) if exists else {}
        self.exists = exists

    def __repr__(self) -> str:
        return f"Record({self.record_type!r}, id={self.key!r}, exists={self.exists})"

    def __getitem__(self, key: str) -> object:
        return self.attributes[key]

    def __setitem__(self, key: str, value: object) -> None:
        self.attributes[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self.attributes

    @property
    def key(self) -> object:
        return self.attributes.get("id")

    def get(self, key: str, default: object = None) -> object:
        return self.attributes.get(key, default)

    def update(self, values: Mapping[str, object]) -> "Record":
        self.attributes.update(values)
        return self

    def get_original(self, key: str, default: object = None) -> object:
        return self.original.get(key, default)

    def get_dirty(self) -> dict[str, object]:
        return {
            key: value
            for key, value in self.attributes.items()
            if key not in self.original or self.original[key] != value
        }

    def is_dirty(self, key: str | None = None) -> bool:
        dirty = self.get_dirty()
        return bool(dirty) if key is None else key in dirty

    def sync_original(self) -> None:
        self.original = copy.deepcopy(self.attributes)

    def snapshot(self) -> dict[str, object]:
        return copy.deepcopy(self.attributes)


class RecordHook:
    """Per-type lifecycle hook; subclasses override only what they need."""

    def columns(self) -> Sequence[Column]:
        return ()

    def should_create(self, record: Record) -> bool:
        return True

    def should_update(self, record: Record) -> bool:
        return True

    def should_delete(self, record: Record) -> bool:
        return True


class RecordType(Protocol):
    name: str
    table: str
    path_key: str
    file_extension: str

    def columns(self) -> tuple[Column, ...]:
        raise NotImplementedError

    def roots(self) -> list[Path]:
        raise NotImplementedError

    def sources(self) -> list[SourceFile]:
        raise NotImplementedError

    def load(self, source: SourceFile, *, blueprint: Sequence[Column]) -> dict | None:
        raise NotImplementedError

    def decode_path(self, rel_path: str) -> dict[str, object]:
        raise NotImplementedError

    def decode(
        self,
        rel_path: str,
        raw_text: str,
        meta_file_exists: bool = False,
        *,
        blueprint: Sequence[Column],
        container: str | None = None,
    ) -> dict[str, object]:
        raise NotImplementedError

    def encode(self, attributes: Mapping[str, object]) -> str:
        raise NotImplementedError

    def file_path(self, attributes: Mapping[str, object]) -> str:
        raise NotImplementedError

    def storage_for(self, attributes: Mapping[str, object]) -> Storage:
        raise NotImplementedError

    def deferred(self, row: Mapping[str, object]) -> Deferred | None:
        raise NotImplementedError

    def after_write(self, record: Record) -> dict[str, object]:
        raise NotImplementedError

    def after_delete(self, record: Record) -> None:
        raise NotImplementedError

    def prepare_new(self, attributes: Mapping[str, object]) -> dict[str, object]:
        raise NotImplementedError


def column_defaults(blueprint: Sequence[Column]) -> dict[str, object]:
    """Seed every column that has a declared default, or is nullable, with that value."""

    defaults: dict[str, object] = {}
    for column in blueprint:
        if column.has_default():
            defaults[column.name] = copy.deepcopy(column.default)
        elif column.nullable:
            defaults[column.name] = None
    return defaults


def _decode_text(raw: bytes | str) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def _normalize_rel_path(rel_path: str) -> str:
    return rel_path.replace("\\", "/").lstrip("/")


def date_from_token(token: str) -> str | None:
    """Turn ``2024-01-01`` or ``2024-01-01-1230`` into an ISO date/datetime string."""

    match = _DATE_TOKEN_RE.match(token)
    if match is None:
        return None
    day, hour, minute = match.groups()
    if hour is None:
        return day
    return f"{day}T{hour}:{minute}:00"


def token_from_date(value: object) -> str | None:
    """Inverse of :func:`date_from_token` for path building."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.hour or value.minute:
            return value.strftime("%Y-%m-%d-%H%M")
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    if _DATE_TOKEN_RE.match(text):
        return text
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return token_from_date(parsed)


class FlatfileRecordType:
    """Shared encode logic for every record type."""

    name = ""
    table = ""
    path_key = "path"
    file_extension = "md"

    def keep_nulls(self, attributes: Mapping[str, object]) -> bool:
        return False

    def file_data(self, attributes: Mapping[str, object]) -> dict[str, object]:
        raise NotImplementedError

    def encode(self, attributes: Mapping[str, object]) -> str:
        data = self.file_data(attributes)
        if not self.keep_nulls(attributes):
            data = {key: value for key, value in data.items() if value is not None}
        if self.file_extension == "yaml":
            return codec.dump(data)
        content = data.get(codec.CONTENT_KEY)
        if content is None:
            return codec.dump_front_matter(data)
        header = {key: value for key, value in data.items() if key != codec.CONTENT_KEY}
        return codec.dump_front_matter(header, str(content))

    def deferred(self, row: Mapping[str, object]) -> Deferred | None:
        return None

    def after_write(self, record: Record) -> dict[str, object]:
        return {}

    def after_delete(self, record: Record) -> None:
        return None


class EntryType(FlatfileRecordType):
    """Markdown entries stored at ``<collection>/[<site>/]<date>.<slug>.md``."""

    name = "entry"
    table = "entries"
    file_extension = "md"

    def __init__(
        self,
        storage: Storage,
        *,
        multisite: bool = False,
        exclude_patterns: Sequence[str] = (),
    ) -> None:
        self.storage = storage
        self.multisite = multisite
        self.exclude_patterns = tuple(exclude_patterns)

    def columns(self) -> tuple[Column, ...]:
        return (
            Column("id", unique=True),
            Column("path"),
            Column(READ_FROM_COLUMN, nullable=True),
            Column("blueprint", nullable=True),
            Column("collection", index=True),
            Column("origin", nullable=True),
            Column(DATA_COLUMN, ColumnType.JSON, nullable=True),
            Column("date", ColumnType.DATETIME, nullable=True),
            Column("published", ColumnType.BOOLEAN, default=True),
            Column("site"),
            Column("slug"),
        )

    def roots(self) -> list[Path]:
        return [self.storage.root]

    def sources(self) -> list[SourceFile]:
        return [
            SourceFile(rel_path=rel, read_from=str(self.storage.root / rel))
            for rel in self.storage.list_files(
                extensions=(self.file_extension,),
                exclude_patterns=self.exclude_patterns,
            )
        ]

    def load(self, source: SourceFile, *, blueprint: Sequence[Column]) -> dict | None:
        raw = self.storage.read(source.rel_path)
        if raw is None:
            return None
        row = self.decode(source.rel_path, _decode_text(raw), blueprint=blueprint)
        row[READ_FROM_COLUMN] = source.read_from
        return row

    def decode_path(self, rel_path: str) -> dict[str, object]:
        rel = _normalize_rel_path(rel_path)
        collection, sep, remainder = rel.partition("/")
        if not sep or not collection or not remainder:
            raise PathDecodeError(Messages.ERROR_PATH_UNRESOLVED.format(path=rel_path), path=rel_path)
        stem = strip_extension(remainder, self.file_extension)
        attributes: dict[str, object] = {
            "collection": collection,
            "site": DEFAULT_SITE,
            "path": f"{collection}/{stem}",
        }
        if self.multisite and "/" in stem:
            site, stem = stem.split("/", 1)
            attributes["site"] = site
        folder, sep, name = stem.rpartition("/")
        token, dot, rest = name.partition(".")
        parsed_date = date_from_token(token) if dot else None
        if parsed_date is not None:
            attributes["date"] = parsed_date
            name = rest
        slug = f"{folder}{sep}{name}" if name else ""
        if not slug:
            raise PathDecodeError(Messages.ERROR_PATH_UNRESOLVED.format(path=rel_path), path=rel_path)
        attributes["slug"] = slug
        return attributes

    def decode(
        self,
        rel_path: str,
        raw_text: str,
        meta_file_exists: bool = False,
        *,
        blueprint: Sequence[Column],
        container: str | None = None,
    ) -> dict[str, object]:
        path_attributes = self.decode_path(rel_path)
        document = codec.parse_document(raw_text, path=rel_path)
        names = {column.name for column in blueprint}
        row = column_defaults(blueprint)
        row.update({key: value for key, value in document.items() if key in names})
        row.update(path_attributes)
        row[DATA_COLUMN] = {
            key: value for key, value in document.items() if key not in names
        }
        if not row.get("id"):
            row["id"] = str(uuid.uuid4())
        return row

    def keep_nulls(self, attributes: Mapping[str, object]) -> bool:
        return bool(attributes.get("origin"))

    def file_data(self, attributes: Mapping[str, object]) -> dict[str, object]:
        origin = attributes.get("origin")
        header = {
            "id": attributes.get("id"),
            "origin": origin,
            "published": False if attributes.get("published") is False else None,
            "blueprint": attributes.get("blueprint"),
        }
        header = {key: value for key, value in header.items() if value is not None}
        data = dict(attributes.get(DATA_COLUMN) or {})
        if not origin:
            data = {key: value for key, value in data.items() if value is not None}
        return {**header, **data}

    def build_path(self, attributes: Mapping[str, object]) -> str:
        collection = str(attributes.get("collection") or "").strip("/")
        slug = str(attributes.get("slug") or attributes.get("id") or "")
        if not collection or not slug:
            raise FlatcacheError(Messages.ERROR_PATH_UNRESOLVED.format(path=slug or "<empty>"))
        folder, sep, name = slug.rpartition("/")
        token = token_from_date(attributes.get("date"))
        stem = f"{folder}{sep}{token}.{name}" if token else slug
        if self.multisite:
            stem = f"{attributes.get('site') or DEFAULT_SITE}/{stem}"
        return f"{collection}/{stem}"

    def file_path(self, attributes: Mapping[str, object]) -> str:
        value = attributes.get(self.path_key) or self.build_path(attributes)
        return f"{value}.{self.file_extension}"

    def storage_for(self, attributes: Mapping[str, object]) -> Storage:
        return self.storage

    def prepare_new(self, attributes: Mapping[str, object]) -> dict[str, object]:
        prepared = dict(attributes)
        if not prepared.get("id"):
            prepared["id"] = str(uuid.uuid4())
        prepared.setdefault("site", DEFAULT_SITE)
        if not prepared.get(self.path_key):
            prepared[self.path_key] = self.build_path(prepared)
        return prepared


class AssetType(FlatfileRecordType):
    """Binary assets described by a sibling ``.meta/<basename>.yaml`` file."""

    name = "asset"
    table = "assets"
    file_extension = META_EXTENSION

    def __init__(
        self,
        containers: Mapping[str, Storage],
        *,
        meta_cache: MetaCache,
        exclude_patterns: Sequence[str] = (),
    ) -> None:
        self.containers = dict(containers)
        self.meta_cache = meta_cache
        self.exclude_patterns = tuple(exclude_patterns)

    def columns(self) -> tuple[Column, ...]:
        return (
            Column("id", unique=True),
            Column(READ_FROM_COLUMN, nullable=True),
            Column("meta_file_exists", ColumnType.BOOLEAN, default=False),
            Column("path"),
            Column("container", index=True),
            Column("folder", index=True),
            Column("basename", index=True),
            Column("filename", index=True),
            Column("extension", index=True),
            Column("duration", ColumnType.INTEGER, nullable=True),
            Column("height", ColumnType.INTEGER, nullable=True),
            Column("last_modified", ColumnType.INTEGER, nullable=True),
            Column("mime_type", nullable=True),
            Column("size", ColumnType.INTEGER, nullable=True),
            Column("width", ColumnType.INTEGER, nullable=True),
            Column(DATA_COLUMN, ColumnType.JSON, nullable=True),
        )

    def roots(self) -> list[Path]:
        return [storage.root for storage in self.containers.values()]

    def sources(self) -> list[SourceFile]:
        sources: list[SourceFile] = []
        for handle, storage in self.containers.items():
            for rel in storage.list_files(exclude_patterns=self.exclude_patterns):
                sources.append(
                    SourceFile(
                        rel_path=rel,
                        read_from=str(storage.root / rel),
                        container=handle,
                    )
                )
        return sources

    def load(self, source: SourceFile, *, blueprint: Sequence[Column]) -> dict | None:
        storage = self._storage(source.container)
        meta_file_exists = True
        raw = storage.read(meta_path(source.rel_path, META_EXTENSION))
        if raw is None:
            if not storage.exists(source.rel_path):
                return None
            meta_file_exists = False
            raw = b""
        row = self.decode(
            source.rel_path,
            _decode_text(raw),
            meta_file_exists,
            blueprint=blueprint,
            container=source.container,
        )
        row[READ_FROM_COLUMN] = source.read_from
        return row

    def decode_path(self, rel_path: str) -> dict[str, object]:
        rel = _normalize_rel_path(rel_path)
        if not rel:
            raise PathDecodeError(Messages.ERROR_PATH_UNRESOLVED.format(path=rel_path), path=rel_path)
        posix = PurePosixPath(rel)
        parent = str(posix.parent)
        suffix = posix.suffix
        return {
            "path": rel,
            "folder": "/" if parent == "." else parent,
            "basename": posix.name,
            "filename": posix.name[: -len(suffix)] if suffix else posix.name,
            "extension": suffix[1:] if suffix else "",
        }

    def decode(
        self,
        rel_path: str,
        raw_text: str,
        meta_file_exists: bool = False,
        *,
        blueprint: Sequence[Column],
        container: str | None = None,
    ) -> dict[str, object]:
        if not container:
            raise PathDecodeError(Messages.ERROR_PATH_UNRESOLVED.format(path=rel_path), path=rel_path)
        path_attributes = self.decode_path(rel_path)
        document = codec.parse_yaml(raw_text, path=rel_path)
        names = {column.name for column in blueprint}
        row = column_defaults(blueprint)
        row.update({key: value for key, value in document.items() if key in names})
        row.update(path_attributes)
        row[DATA_COLUMN] = document.get(DATA_COLUMN) or {}
        row["container"] = container
        row["meta_file_exists"] = meta_file_exists
        if not row.get("id"):
            row["id"] = f"{container}::{path_attributes['path']}"
        self.remember(row)
        return row

    def remember(self, row: Mapping[str, object]) -> None:
        self.meta_cache.put(
            meta_cache_key(str(row["container"]), str(row["path"])),
            trim_meta(row),
        )

    def keep_nulls(self, attributes: Mapping[str, object]) -> bool:
        return True

    def file_data(self, attributes: Mapping[str, object]) -> dict[str, object]:
        return {
            DATA_COLUMN: dict(attributes.get(DATA_COLUMN) or {}),
            "size": attributes.get("size"),
            "last_modified": attributes.get("last_modified"),
            "width": attributes.get("width"),
            "height": attributes.get("height"),
            "mime_type": attributes.get("mime_type"),
            "duration": attributes.get("duration"),
        }

    def file_path(self, attributes: Mapping[str, object]) -> str:
        return meta_path(str(attributes.get(self.path_key) or ""), META_EXTENSION)

    def storage_for(self, attributes: Mapping[str, object]) -> Storage:
        return self._storage(attributes.get("container"))

    def deferred(self, row: Mapping[str, object]) -> Deferred | None:
        # Assets without a meta file get their file statistics once the row exists.
        if row.get("meta_file_exists"):
            return None
        snapshot = dict(row)

        def _compute() -> dict[str, object] | None:
            storage = self._storage(snapshot.get("container"))
            path = str(snapshot["path"])
            last_modified = storage.last_modified(path)
            values = {
                "size": storage.size(path),
                "last_modified": int(last_modified) if last_modified is not None else None,
                "mime_type": mimetypes.guess_type(str(snapshot.get("basename") or path))[0],
            }
            values = {key: value for key, value in values.items() if value is not None}
            if values:
                self.remember({**snapshot, **values})
            return values

        return _compute

    def after_write(self, record: Record) -> dict[str, object]:
        self.remember(record.attributes)
        return {"meta_file_exists": True}

    def after_delete(self, record: Record) -> None:
        self.meta_cache.forget(
            meta_cache_key(str(record.get("container")), str(record.get(self.path_key)))
        )

    def prepare_new(self, attributes: Mapping[str, object]) -> dict[str, object]:
        container = attributes.get("container")
        path = attributes.get(self.path_key)
        if not container or not path:
            raise FlatcacheError(Messages.ERROR_PATH_UNRESOLVED.format(path=path or "<empty>"))
        prepared = {**self.decode_path(str(path)), **dict(attributes)}
        prepared.setdefault("meta_file_exists", False)
        if not prepared.get("id"):
            prepared["id"] = f"{container}::{prepared[self.path_key]}"
        return prepared

    def _storage(self, container: object) -> Storage:
        try:
            return self.containers[str(container)]
        except KeyError as exc:
            raise FlatcacheError(f"Unknown asset container: {container}") from exc


RECORD_TYPE_NAMES: tuple[str, ...] = ("asset", "entry")


def build_record_types(settings: "Settings", meta_cache: MetaCache) -> dict[str, RecordType]:
    """Instantiate the closed set of record types for *settings*."""

    return {
        "entry": EntryType(
            LocalStorage(settings.entries_dir),
            multisite=settings.multisite,
            exclude_patterns=settings.exclude_patterns,
        ),
        "asset": AssetType(
            {
                handle: LocalStorage(directory)
                for handle, directory in settings.asset_containers.items()
            },
            meta_cache=meta_cache,
            exclude_patterns=settings.exclude_patterns,
        ),
    }


def get_record_type(types: Mapping[str, RecordType], name: str) -> RecordType:
    try:
        return types[name]
    except KeyError as exc:
        raise ValueError(f"Unsupported record type: {name}") from exc


def available_record_types() -> list[str]:
    return sorted(RECORD_TYPE_NAMES)
