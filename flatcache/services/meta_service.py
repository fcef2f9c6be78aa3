"""Process-lifetime store for derived record metadata."""

from __future__ import annotations

import copy
import hashlib
from threading import Lock
from typing import Mapping

META_KEY_PREFIX = "asset-meta"

TRIMMED_META_KEYS = (
    "id",
    "file_path_read_from",
    "meta_file_exists",
    "container",
    "path",
    "folder",
    "basename",
    "filename",
    "extension",
    "created_at",
    "updated_at",
)


def meta_cache_key(container: str, path: str) -> str:
    """Return the stable cache key for the record stored at *container*::*path*."""

    digest = hashlib.sha1(f"{container}::{path}".encode("utf-8")).hexdigest()
    return f"{META_KEY_PREFIX}::{digest}"


def trim_meta(attributes: Mapping[str, object]) -> dict[str, object]:
    """Drop identity and bookkeeping columns, keeping only derived metadata."""

    return {
        key: value for key, value in attributes.items() if key not in TRIMMED_META_KEYS
    }


class MetaCache:
    """Key/value store written once per record materialization; last write wins."""

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, object]] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def put(self, key: str, attributes: Mapping[str, object]) -> None:
        value = copy.deepcopy(dict(attributes))
        with self._lock:
            self._entries[key] = value

    def get(self, key: str) -> dict[str, object] | None:
        with self._lock:
            value = self._entries.get(key)
        return copy.deepcopy(value) if value is not None else None

    def forget(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
