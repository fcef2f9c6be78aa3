"""Utility helpers for filesystem access and path handling."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Iterable, List, Sequence
import os

META_DIRNAME = ".meta"


def resolve_directory(path: Path | str) -> Path:
    """Resolve and validate a user supplied directory path."""
    dir_path = Path(path).expanduser().resolve()
    if not dir_path.exists():
        raise FileNotFoundError(f"Directory does not exist: {dir_path}")
    if not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    return dir_path


def normalize_extensions(values: Iterable[str] | None) -> tuple[str, ...]:
    """Return a sorted, deduplicated tuple of normalized file extensions."""

    if not values:
        return ()

    normalized: list[str] = []
    seen: set[str] = set()
    for raw in values:
        if raw is None:
            continue
        token = raw.strip().lower()
        if not token:
            continue
        if not token.startswith("."):
            token = f".{token}"
        if token == ".":
            continue
        if token not in seen:
            seen.add(token)
            normalized.append(token)
    if not normalized:
        return ()
    return tuple(sorted(normalized))


def normalize_exclude_patterns(values: Iterable[str] | None) -> tuple[str, ...]:
    """Return deduplicated gitignore-style exclude patterns."""

    if not values:
        return ()
    patterns: list[str] = []
    for raw in values:
        if raw is None:
            continue
        for token in raw.split(","):
            cleaned = token.strip()
            if not cleaned:
                continue
            if cleaned.startswith(".") and "/" not in cleaned and "*" not in cleaned:
                cleaned = f"**/*{cleaned}"
            if cleaned not in patterns:
                patterns.append(cleaned)
    return tuple(patterns)


def build_exclude_spec(patterns: Sequence[str] | None):
    """Return a pathspec matcher for *patterns*, or None when there are none."""

    if not patterns:
        return None
    from pathspec.gitignore import GitIgnoreSpec

    return GitIgnoreSpec.from_lines(list(patterns))


def is_excluded_path(spec, rel_path: str, *, is_dir: bool = False) -> bool:
    if spec is None or not rel_path:
        return False
    candidate = f"{rel_path}/" if is_dir and not rel_path.endswith("/") else rel_path
    return spec.match_file(candidate)


def _relative_posix(path: Path, root: Path) -> str:
    rel = path.relative_to(root)
    if rel == Path("."):
        return ""
    return rel.as_posix()


def collect_files(
    root: Path | str,
    include_hidden: bool = False,
    recursive: bool = True,
    extensions: Sequence[str] | None = None,
    exclude_patterns: Sequence[str] | None = None,
) -> List[Path]:
    """Collect files under *root*; a missing root yields an empty list."""

    directory = Path(root)
    if not directory.is_dir():
        return []
    files: List[Path] = []
    normalized_exts = tuple(extensions or ())
    spec = build_exclude_spec(exclude_patterns)

    for dirpath, dirnames, filenames in os.walk(directory, topdown=True):
        current_dir = Path(dirpath)
        if not include_hidden:
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            filenames = [f for f in filenames if not f.startswith(".")]
        if spec is not None:
            dirnames[:] = [
                d
                for d in dirnames
                if not is_excluded_path(
                    spec, _relative_posix(current_dir / d, directory), is_dir=True
                )
            ]
        if not recursive:
            dirnames[:] = []
        for filename in filenames:
            candidate = current_dir / filename
            if normalized_exts and not _matches_extension(candidate, normalized_exts):
                continue
            if spec is not None and is_excluded_path(
                spec, _relative_posix(candidate, directory)
            ):
                continue
            files.append(candidate)

    files.sort()
    return files


def newest_mtime(root: Path | str) -> float | None:
    """Return the newest modification time of *root* and everything beneath it."""

    directory = Path(root)
    try:
        newest = directory.stat().st_mtime
    except FileNotFoundError:
        return None
    for dirpath, dirnames, filenames in os.walk(directory):
        for name in (*dirnames, *filenames):
            try:
                mtime = os.stat(os.path.join(dirpath, name)).st_mtime
            except FileNotFoundError:
                continue
            if mtime > newest:
                newest = mtime
    return newest


def _matches_extension(path: Path, extensions: Sequence[str]) -> bool:
    """Return True if *path* ends with any of the provided *extensions*."""

    filename = path.name.lower()
    return any(filename.endswith(ext) for ext in extensions)


def strip_extension(rel_path: str, extension: str) -> str:
    suffix = f".{extension.lstrip('.')}"
    if rel_path.endswith(suffix):
        return rel_path[: -len(suffix)]
    return rel_path


def meta_path(path: str, extension: str = "yaml") -> str:
    """Return the sibling metadata path ``<dir>/.meta/<basename>.<ext>`` for *path*."""

    posix = PurePosixPath(path)
    parent = str(posix.parent)
    candidate = f"{parent}/{META_DIRNAME}/{posix.name}.{extension.lstrip('.')}"
    if candidate.startswith("./"):
        candidate = candidate[2:]
    return candidate.lstrip("/")


def format_path(path: Path, base: Path | None = None) -> str:
    """Return a user friendly representation of *path* relative to *base* when possible."""
    if base:
        try:
            relative = path.relative_to(base)
            return f"./{relative.as_posix()}"
        except ValueError:
            return str(path)
    return str(path)


def ensure_positive(value: int, name: str) -> int:
    """Validate that *value* is positive."""
    if value <= 0:
        raise ValueError(f"{name} must be greater than 0")
    return value
