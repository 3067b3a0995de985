"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "ARCS_"
DEFAULT_CONFIG_PATH = Path("~/.config/archive-serve/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("serve", "root_dir"): "root_dir",
    ("serve", "host"): "host",
    ("serve", "port"): "port",
    ("serve", "create_indexes"): "create_indexes",
    ("serve", "expose_hidden_files"): "expose_hidden_files",
    ("cache", "dir"): "cache_dir",
    ("cache", "db_filename"): "db_filename",
    ("archive", "suffix"): "archive_suffix",
    ("archive", "default_entry"): "default_entry",
    ("archive", "chunk_size"): "chunk_size",
    ("archive", "verify_checksums"): "verify_checksums",
    ("watch", "enabled"): "watch_enabled",
    ("logging", "level"): "log_level",
    ("logging", "json"): "log_json",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    root_dir: Path = Field(default=Path("."))
    cache_dir: Path = Field(default=Path.home() / ".archive-serve")
    db_filename: str = ".zip_reader_cache.db"
    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    create_indexes: bool = False
    expose_hidden_files: bool = False
    archive_suffix: str = ".zip"
    default_entry: str = "index.html"
    chunk_size: int = Field(default=64 * 1024, ge=512)
    verify_checksums: bool = True
    watch_enabled: bool = False
    log_level: str = "INFO"
    log_json: bool = True

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("root_dir", "cache_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("directory settings must be a path or string")

    @field_validator("archive_suffix")
    @classmethod
    def _check_suffix(cls, value: str) -> str:
        if not value.startswith(".") or "/" in value:
            raise ValueError("archive_suffix must look like '.zip'")
        return value

    @property
    def db_path(self) -> Path:
        return self.cache_dir / self.db_filename

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with ARCS_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for the server entrypoint."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
