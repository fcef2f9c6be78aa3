"""File storage used to read and mirror canonical files."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol, Sequence

from .utils import collect_files, normalize_exclude_patterns, normalize_extensions


class Storage(Protocol):
    root: Path

    def read(self, path: str) -> bytes | None:
        raise NotImplementedError

    def write(self, path: str, data: bytes | str) -> None:
        raise NotImplementedError

    def delete(self, path: str) -> bool:
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        raise NotImplementedError

    def last_modified(self, path: str) -> float | None:
        raise NotImplementedError

    def size(self, path: str) -> int | None:
        raise NotImplementedError

    def list_files(
        self,
        directory: str = "",
        *,
        include_hidden: bool = False,
        extensions: Sequence[str] | None = None,
        exclude_patterns: Sequence[str] | None = None,
    ) -> list[str]:
        raise NotImplementedError


class LocalStorage(Storage):
    """Storage rooted at a local directory; paths are relative POSIX strings."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"LocalStorage({str(self.root)!r})"

    def absolute(self, path: str) -> Path:
        return self.root / Path(path.lstrip("/"))

    def read(self, path: str) -> bytes | None:
        try:
            return self.absolute(path).read_bytes()
        except FileNotFoundError:
            return None

    def write(self, path: str, data: bytes | str) -> None:
        target = self.absolute(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = data.encode("utf-8") if isinstance(data, str) else data
        tmp_path = target.with_name(f".{target.name}.tmp")
        tmp_path.write_bytes(payload)
        os.replace(tmp_path, target)

    def delete(self, path: str) -> bool:
        """Delete *path*; a file that is already absent is not an error."""

        try:
            self.absolute(path).unlink()
        except FileNotFoundError:
            return False
        return True

    def exists(self, path: str) -> bool:
        return self.absolute(path).is_file()

    def last_modified(self, path: str) -> float | None:
        try:
            return self.absolute(path).stat().st_mtime
        except FileNotFoundError:
            return None

    def size(self, path: str) -> int | None:
        try:
            return self.absolute(path).stat().st_size
        except FileNotFoundError:
            return None

    def list_files(
        self,
        directory: str = "",
        *,
        include_hidden: bool = False,
        extensions: Sequence[str] | None = None,
        exclude_patterns: Sequence[str] | None = None,
    ) -> list[str]:
        base = self.absolute(directory) if directory else self.root
        return [
            file.relative_to(self.root).as_posix()
            for file in collect_files(
                base,
                include_hidden=include_hidden,
                extensions=normalize_extensions(extensions),
                exclude_patterns=normalize_exclude_patterns(exclude_patterns),
            )
        ]
