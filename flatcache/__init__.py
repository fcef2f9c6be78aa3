"""flatcache package initialization."""

from __future__ import annotations

from .api import (
    DecodeError,
    FlatcacheError,
    PathDecodeError,
    SchemaError,
    SyncEngine,
    SyncError,
    data_dir_context,
    set_data_dir,
)

__all__ = [
    "__version__",
    "DecodeError",
    "FlatcacheError",
    "PathDecodeError",
    "SchemaError",
    "SyncEngine",
    "SyncError",
    "data_dir_context",
    "get_version",
    "set_data_dir",
]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
