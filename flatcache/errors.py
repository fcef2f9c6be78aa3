"""Exception types raised by the synchronization engine."""

from __future__ import annotations


class FlatcacheError(Exception):
    """Base class for flatcache failures."""


class DecodeError(FlatcacheError):
    """Raised when a flat file cannot be parsed into a row."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class PathDecodeError(DecodeError):
    """Raised when a relative path carries no grouping segment."""


class SchemaError(FlatcacheError):
    """Raised when a decoded row lacks a column that has no default and is not nullable."""

    def __init__(self, message: str, *, column: str, path: str | None = None) -> None:
        super().__init__(message)
        self.column = column
        self.path = path


class SyncError(FlatcacheError):
    """Raised when a row mutation could not be mirrored to its canonical file."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path
