from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

try:
    import tomllib as toml
except ImportError:
    import tomli as toml

try:
    import yaml
except ImportError:  # pragma: no cover - optional dependency
    yaml = None

from .errors import ConfigError
from .utils import parse_int

DEFAULT_CONFIG = "site.toml"
DEFAULT_CACHE_DIR = ".cache"
DEFAULT_DATABASE_URL = "sqlite:///site.db"
DEFAULT_BASE_URL = "https://127.0.0.1"
DEFAULT_BUILD_DIR = "./build"
DATABASE_URL_ENV = "DATABASE_URL"
LOG_LEVEL_ENV = "REVSITE_LOG"
UNKNOWN_FILE_POLICIES = ("error", "skip")


@dataclass(slots=True)
class Settings:
    cache_dir: Path
    database_url: str
    workers: int = 0
    unknown_files: str = "error"

    def __post_init__(self) -> None:
        if self.unknown_files not in UNKNOWN_FILE_POLICIES:
            raise ConfigError(
                f"unknown_files must be one of {', '.join(UNKNOWN_FILE_POLICIES)}: {self.unknown_files!r}"
            )
        self.workers = max(0, self.workers)


def load_config(path: Path) -> dict:
    if not path.exists():
        return {}
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix == ".toml":
        try:
            data = toml.loads(text)
        except toml.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in config file {path}: {exc}") from exc
        return _require_mapping(data, path)
    if suffix in {".yml", ".yaml"}:
        if yaml is None:
            raise ConfigError("YAML config requires PyYAML.")
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in config file {path}: {exc}") from exc
        if data is None:
            return {}
        return _require_mapping(data, path)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    return _require_mapping(data, path)


def _require_mapping(data: object, path: Path) -> dict:
    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a mapping: {path}")
    return data


def default_database_url(config: dict) -> str:
    value = config.get("database_url") or os.environ.get(DATABASE_URL_ENV)
    return str(value) if value else DEFAULT_DATABASE_URL


def default_log_level(config: dict) -> str:
    value = config.get("log_level") or os.environ.get(LOG_LEVEL_ENV) or "INFO"
    return str(value).upper()


def settings_from_args(args: object) -> Settings:
    return Settings(
        cache_dir=Path(getattr(args, "cache_dir", DEFAULT_CACHE_DIR)),
        database_url=str(getattr(args, "database_url", DEFAULT_DATABASE_URL)),
        workers=parse_int(getattr(args, "workers", 0), 0),
        unknown_files=str(getattr(args, "unknown_files", "error")),
    )
