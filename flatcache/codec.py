"""YAML and front-matter document codec."""

from __future__ import annotations

import re
from typing import Any, Mapping

import yaml

from .errors import DecodeError
from .text import Messages

CONTENT_KEY = "content"
FRONT_MATTER_DELIMITER = "---"

_FRONT_MATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(?P<header>.*?)(?:^|\r?\n)---[ \t]*(?:\r?\n|\Z)(?P<body>.*)\Z",
    re.DOTALL | re.MULTILINE,
)


def parse_yaml(text: str, *, path: str | None = None) -> dict[str, Any]:
    """Parse a plain YAML document into a mapping (empty text -> {})."""

    try:
        data = yaml.safe_load(text) if text and text.strip() else None
    except yaml.YAMLError as exc:
        raise DecodeError(
            Messages.ERROR_DOCUMENT_INVALID.format(path=path or "<text>", reason=exc),
            path=path,
        ) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise DecodeError(
            Messages.ERROR_DOCUMENT_NOT_MAPPING.format(path=path or "<text>"),
            path=path,
        )
    return data


def parse_document(text: str, *, path: str | None = None) -> dict[str, Any]:
    """Parse a front-matter document or plain YAML document.

    For front-matter documents the body, when not blank, is returned under the
    reserved ``content`` key.
    """

    match = _FRONT_MATTER_RE.match(text or "")
    if match is None:
        return parse_yaml(text, path=path)
    data = parse_yaml(match.group("header"), path=path)
    body = match.group("body")
    if body.strip():
        data[CONTENT_KEY] = body
    return data


def dump(data: Mapping[str, Any]) -> str:
    if not data:
        return ""
    return yaml.safe_dump(
        dict(data),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


def dump_front_matter(data: Mapping[str, Any], body: str | None = None) -> str:
    header = dump(data)
    return f"{FRONT_MATTER_DELIMITER}\n{header}{FRONT_MATTER_DELIMITER}\n{body or ''}"
