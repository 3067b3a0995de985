"""Test fixtures for archive-serve."""

from __future__ import annotations

import os
import sys
import zipfile
from pathlib import Path
from typing import Callable, Mapping

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

ZipFactory = Callable[..., Path]


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point config at throwaway locations between tests."""
    monkeypatch.setenv("ARCS_CACHE_DIR", str(tmp_path / "cli-cache"))
    monkeypatch.setenv("ARCS_LOG_LEVEL", "WARNING")
    monkeypatch.delenv("ARCS_CONFIG", raising=False)

    from archive_serve.core import config

    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()


def write_zip(
    path: Path,
    files: Mapping[str, str | bytes],
    compression: int = zipfile.ZIP_DEFLATED,
) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w", compression=compression) as archive:
        for name, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            archive.writestr(name, data)
    return path


def bump_mtime(path: Path, seconds: int = 2) -> None:
    """Move a file's mtime forward so the change is visible even on coarse clocks."""
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + seconds * 1_000_000_000))


@pytest.fixture
def make_zip(tmp_path: Path) -> ZipFactory:
    def factory(
        name: str,
        files: Mapping[str, str | bytes],
        compression: int = zipfile.ZIP_DEFLATED,
    ) -> Path:
        return write_zip(tmp_path / name, files, compression)

    return factory


@pytest.fixture
def store(tmp_path: Path):
    from archive_serve.db.metadata import MetadataStore

    metadata_store = MetadataStore.open(tmp_path / "cache" / "index.db")
    yield metadata_store
    metadata_store.close()


@pytest.fixture
def indexer(store):
    from archive_serve.archive.indexer import Indexer

    return Indexer(store)


@pytest.fixture
def streamer(store, indexer):
    from archive_serve.archive.streamer import Streamer

    return Streamer(store, indexer, chunk_size=1024)
