#!/usr/bin/env python3
"""Bump flatcache versions in one command.

Usage:
  python scripts/bump_version.py 0.2.0
  python scripts/bump_version.py v0.2.0
"""

from __future__ import annotations

import re
import sys
from pathlib import Path


_VERSION_PATTERN = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+(?:[0-9A-Za-z.+-]+)?$")


def main(argv: list[str]) -> int:
    if len(argv) != 2 or argv[1] in {"-h", "--help"}:
        print(__doc__.strip())
        return 2

    raw = argv[1].strip()
    if raw.startswith("v"):
        raw = raw[1:]
    if not raw or not _VERSION_PATTERN.fullmatch(raw):
        raise SystemExit(f"Invalid version '{argv[1]}'. Expected like 0.2.0")

    updated = _run(version=raw, repo_root=Path(__file__).resolve().parents[1])
    print(f"Updated version to {raw}")
    for path in updated:
        print(f"- {path}")
    return 0


def _run(*, version: str, repo_root: Path) -> list[Path]:
    package_init = repo_root / "flatcache" / "__init__.py"
    pyproject = repo_root / "pyproject.toml"
    _set_python_version(package_init, version)
    _set_pyproject_version(pyproject, version)
    return [package_init, pyproject]


def _set_python_version(path: Path, version: str) -> None:
    content = path.read_text(encoding="utf-8")
    updated, count = re.subn(
        r'(?m)^__version__\s*=\s*"[^"]+"$',
        f'__version__ = "{version}"',
        content,
        count=1,
    )
    if count != 1:
        raise RuntimeError(f"Expected exactly one __version__ assignment in {path}")
    path.write_text(updated, encoding="utf-8")


def _set_pyproject_version(path: Path, version: str) -> None:
    content = path.read_text(encoding="utf-8")
    # Only the [project] table's version line; tool tables may carry their own.
    updated, count = re.subn(
        r'(?ms)^(\[project\]\n(?:(?!^\[).)*?^version\s*=\s*)"[^"]+"',
        rf'\g<1>"{version}"',
        content,
        count=1,
    )
    if count != 1:
        raise RuntimeError(f"Expected a [project] version in {path}")
    path.write_text(updated, encoding="utf-8")


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
