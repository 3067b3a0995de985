"""Tests for settings loading."""

from __future__ import annotations

import logging
from pathlib import Path

import orjson
import pytest
from pydantic import ValidationError

from archive_serve.core.config import Settings
from archive_serve.core.errors import ContainerCorrupt
from archive_serve.core.logging import JsonFormatter, PlainFormatter, error_context


def test_yaml_sections_map_to_fields(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ARCS_CACHE_DIR", raising=False)
    monkeypatch.delenv("ARCS_LOG_LEVEL", raising=False)
    config = tmp_path / "config.yaml"
    config.write_text(
        "\n".join(
            [
                "serve:",
                f"  root_dir: {tmp_path / 'www'}",
                "  port: 9000",
                "  create_indexes: true",
                "cache:",
                f"  dir: {tmp_path / 'cache'}",
                "  db_filename: index.db",
                "archive:",
                "  suffix: .jar",
                "  chunk_size: 4096",
                "logging:",
                "  level: DEBUG",
                "  json: false",
            ]
        )
    )

    settings = Settings.from_yaml(config)
    assert settings.root_dir == tmp_path / "www"
    assert settings.port == 9000
    assert settings.create_indexes is True
    assert settings.db_path == tmp_path / "cache" / "index.db"
    assert settings.archive_suffix == ".jar"
    assert settings.chunk_size == 4096
    assert settings.log_level == "DEBUG"
    assert settings.log_json is False


def test_env_overrides_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("serve:\n  port: 9000\n")
    monkeypatch.setenv("ARCS_PORT", "9100")
    monkeypatch.setenv("ARCS_VERIFY_CHECKSUMS", "false")

    settings = Settings.from_yaml(config)
    assert settings.port == 9100
    assert settings.verify_checksums is False
    assert settings.cache_dir == tmp_path / "cli-cache"


def test_config_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "other.yaml"
    config.write_text("archive:\n  default_entry: main.html\n")
    monkeypatch.setenv("ARCS_CONFIG", str(config))
    assert Settings.from_yaml().default_entry == "main.html"


def test_defaults() -> None:
    settings = Settings()
    assert settings.db_filename == ".zip_reader_cache.db"
    assert settings.port == 8080
    assert settings.create_indexes is False
    assert settings.archive_suffix == ".zip"


@pytest.mark.parametrize("suffix", ["zip", ".z/ip"])
def test_invalid_suffix_is_rejected(suffix: str) -> None:
    with pytest.raises(ValidationError):
        Settings(archive_suffix=suffix)


def test_json_formatter_nests_context() -> None:
    record = logging.LogRecord("archive_serve.test", logging.WARNING, __file__, 1, "bad %s", ("zip",), None)
    for key, value in error_context(ContainerCorrupt("boom", path="/srv/a.zip")).items():
        setattr(record, key, value)
    payload = orjson.loads(JsonFormatter().format(record))
    assert payload["msg"] == "bad zip"
    assert payload["level"] == "WARNING"
    assert payload["ctx"] == {"error": "container_corrupt", "container": "/srv/a.zip"}


def test_plain_formatter_appends_context() -> None:
    record = logging.LogRecord("archive_serve.test", logging.INFO, __file__, 1, "indexed", (), None)
    record.ctx_container_id = 7
    assert PlainFormatter().format(record).endswith("indexed container_id=7")
