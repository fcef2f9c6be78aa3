"""Global configuration management for flatcache."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from contextlib import contextmanager
from contextvars import ContextVar
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict

from .text import Messages
from .utils import normalize_exclude_patterns

DEFAULT_CONFIG_DIR = Path(os.path.expanduser("~")) / ".flatcache"
CONFIG_DIR = DEFAULT_CONFIG_DIR
CONFIG_FILE = CONFIG_DIR / "config.json"
_CONFIG_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "flatcache_config_dir_override",
    default=None,
)
DEFAULT_CONTENT_DIR = "content"
DEFAULT_BATCH_SIZE = 500
DEFAULT_READ_CONCURRENCY = max(1, min(4, os.cpu_count() or 1))
ENTRIES_SUBDIR = "collections"
ENV_TESTING = "FLATCACHE_TESTING"


@dataclass
class Config:
    content_dir: str = DEFAULT_CONTENT_DIR
    database: str | None = None
    batch_size: int = DEFAULT_BATCH_SIZE
    read_concurrency: int = DEFAULT_READ_CONCURRENCY
    watcher_enabled: bool = True
    always_rebuild: bool = False
    multisite: bool = False
    timestamps: bool = True
    asset_containers: Dict[str, str] = field(default_factory=dict)
    exclude_patterns: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Settings:
    """Resolved, absolute view of a :class:`Config` used by the engine."""

    content_dir: Path
    database: Path
    batch_size: int
    read_concurrency: int
    watcher_enabled: bool
    always_rebuild: bool
    multisite: bool
    timestamps: bool
    asset_containers: Mapping[str, Path]
    exclude_patterns: tuple[str, ...] = ()

    @property
    def entries_dir(self) -> Path:
        return self.content_dir / ENTRIES_SUBDIR


def _resolve_config_dir() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    return override if override is not None else CONFIG_DIR


def _resolve_config_file() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    if override is not None:
        return override / "config.json"
    return CONFIG_FILE


@contextmanager
def config_dir_context(path: Path | str | None):
    """Temporarily override the config directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _CONFIG_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _CONFIG_DIR_OVERRIDE.reset(token)


def load_config() -> Config:
    config_file = _resolve_config_file()
    if not config_file.exists():
        return Config()
    raw = json.loads(config_file.read_text(encoding="utf-8"))
    return config_from_json(raw)


def save_config(config: Config) -> None:
    config_dir = _resolve_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    data: Dict[str, Any] = {}
    if config.content_dir:
        data["content_dir"] = config.content_dir
    if config.database:
        data["database"] = config.database
    data["batch_size"] = config.batch_size
    data["read_concurrency"] = config.read_concurrency
    data["watcher_enabled"] = bool(config.watcher_enabled)
    data["always_rebuild"] = bool(config.always_rebuild)
    data["multisite"] = bool(config.multisite)
    data["timestamps"] = bool(config.timestamps)
    if config.asset_containers:
        data["asset_containers"] = dict(config.asset_containers)
    if config.exclude_patterns:
        data["exclude_patterns"] = list(config.exclude_patterns)
    config_file = _resolve_config_file()
    config_file.write_text(
        json.dumps(data, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def set_config_dir(path: Path | str | None) -> None:
    global CONFIG_DIR, CONFIG_FILE
    if path is None:
        CONFIG_DIR = DEFAULT_CONFIG_DIR
    else:
        dir_path = Path(path).expanduser().resolve()
        if dir_path.exists() and not dir_path.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {dir_path}")
        CONFIG_DIR = dir_path
    CONFIG_FILE = CONFIG_DIR / "config.json"


def config_from_json(
    payload: str | Mapping[str, object], *, base: Config | None = None
) -> Config:
    """Return a Config from a JSON string or mapping without saving it."""
    data = _coerce_config_payload(payload)
    config = Config() if base is None else _clone_config(base)
    _apply_config_payload(config, data)
    return config


def update_config_from_json(
    payload: str | Mapping[str, object], *, replace: bool = False
) -> Config:
    """Update config from a JSON string or mapping and persist it."""
    base = None if replace else load_config()
    config = config_from_json(payload, base=base)
    save_config(config)
    return config


def set_content_dir(value: str) -> None:
    config = load_config()
    config.content_dir = value
    save_config(config)


def set_batch_size(value: int) -> None:
    config = load_config()
    config.batch_size = value
    save_config(config)


def set_watcher_enabled(value: bool) -> None:
    config = load_config()
    config.watcher_enabled = bool(value)
    save_config(config)


def set_multisite(value: bool) -> None:
    config = load_config()
    config.multisite = bool(value)
    save_config(config)


def testing_flag_enabled() -> bool:
    """Return True when the environment asks for deterministic rebuilds."""

    raw = os.getenv(ENV_TESTING, "")
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def resolve_settings(config: Config, *, content_dir: Path | str | None = None) -> Settings:
    """Resolve *config* into absolute paths and effective flags."""

    from .cache import cache_db_path  # local import avoids a config/cache cycle

    content = Path(content_dir or config.content_dir or DEFAULT_CONTENT_DIR)
    content = content.expanduser().resolve()
    database = (
        Path(config.database).expanduser().resolve()
        if config.database
        else cache_db_path()
    )
    containers = {
        handle: Path(directory).expanduser().resolve()
        for handle, directory in (config.asset_containers or {}).items()
    }
    return Settings(
        content_dir=content,
        database=database,
        batch_size=max(int(config.batch_size or DEFAULT_BATCH_SIZE), 1),
        read_concurrency=max(int(config.read_concurrency or 1), 1),
        watcher_enabled=bool(config.watcher_enabled),
        always_rebuild=bool(config.always_rebuild) or testing_flag_enabled(),
        multisite=bool(config.multisite),
        timestamps=bool(config.timestamps),
        asset_containers=containers,
        exclude_patterns=normalize_exclude_patterns(config.exclude_patterns),
    )


def _coerce_config_payload(payload: str | Mapping[str, object]) -> Mapping[str, object]:
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID) from exc
    elif isinstance(payload, Mapping):
        data = dict(payload)
    else:
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    if not isinstance(data, Mapping):
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    return data


def _clone_config(config: Config) -> Config:
    return Config(
        content_dir=config.content_dir,
        database=config.database,
        batch_size=config.batch_size,
        read_concurrency=config.read_concurrency,
        watcher_enabled=config.watcher_enabled,
        always_rebuild=config.always_rebuild,
        multisite=config.multisite,
        timestamps=config.timestamps,
        asset_containers=dict(config.asset_containers),
        exclude_patterns=list(config.exclude_patterns),
    )


def _apply_config_payload(config: Config, payload: Mapping[str, object]) -> None:
    if "content_dir" in payload:
        config.content_dir = _coerce_required_str(
            payload["content_dir"], "content_dir", DEFAULT_CONTENT_DIR
        )
    if "database" in payload:
        config.database = _coerce_optional_str(payload["database"], "database")
    if "batch_size" in payload:
        config.batch_size = _coerce_int(
            payload["batch_size"], "batch_size", DEFAULT_BATCH_SIZE
        )
    if "read_concurrency" in payload:
        config.read_concurrency = _coerce_int(
            payload["read_concurrency"],
            "read_concurrency",
            DEFAULT_READ_CONCURRENCY,
        )
    if "watcher_enabled" in payload:
        config.watcher_enabled = _coerce_bool(payload["watcher_enabled"], "watcher_enabled")
    if "always_rebuild" in payload:
        config.always_rebuild = _coerce_bool(payload["always_rebuild"], "always_rebuild")
    if "multisite" in payload:
        config.multisite = _coerce_bool(payload["multisite"], "multisite")
    if "timestamps" in payload:
        config.timestamps = _coerce_bool(payload["timestamps"], "timestamps")
    if "asset_containers" in payload:
        config.asset_containers = _coerce_containers(payload["asset_containers"])
    if "exclude_patterns" in payload:
        config.exclude_patterns = _coerce_patterns(payload["exclude_patterns"])


def _coerce_optional_str(value: object, field: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_required_str(value: object, field: str, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or default
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_int(value: object, field: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return default
        try:
            return int(cleaned)
        except ValueError as exc:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_bool(value: object, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if cleaned in {"true", "1", "yes", "on"}:
            return True
        if cleaned in {"false", "0", "no", "off"}:
            return False
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_containers(value: object) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="asset_containers"))
    containers: Dict[str, str] = {}
    for handle, directory in value.items():
        if not isinstance(handle, str) or not isinstance(directory, str):
            raise ValueError(
                Messages.ERROR_CONFIG_VALUE_INVALID.format(field="asset_containers")
            )
        clean_handle = handle.strip()
        clean_dir = directory.strip()
        if clean_handle and clean_dir:
            containers[clean_handle] = clean_dir
    return containers


def _coerce_patterns(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return list(normalize_exclude_patterns([value]))
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return list(normalize_exclude_patterns(value))
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="exclude_patterns"))
