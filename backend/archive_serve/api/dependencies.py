"""Shared FastAPI dependencies."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from fastapi import HTTPException, Request

from archive_serve.archive.indexer import Indexer
from archive_serve.archive.streamer import Streamer
from archive_serve.archive.watcher import ContainerWatcher
from archive_serve.core.config import Settings
from archive_serve.db.metadata import MetadataStore


@dataclass
class Services:
    """Objects owned by one running application, built at startup."""

    settings: Settings
    store: MetadataStore
    indexer: Indexer
    streamer: Streamer
    watcher: ContainerWatcher | None = None

    def close(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
        self.store.close()


def build_services(settings: Settings) -> Services:
    root = settings.root_dir.expanduser().resolve()
    if not root.is_dir():
        raise ValueError(f"invalid service directory: {root}")
    settings.cache_dir.mkdir(parents=True, exist_ok=True)
    store = MetadataStore.open(settings.db_path)
    indexer = Indexer(store)
    streamer = Streamer(
        store,
        indexer,
        chunk_size=settings.chunk_size,
        verify_checksums=settings.verify_checksums,
    )
    watcher = ContainerWatcher(root, indexer, settings.archive_suffix) if settings.watch_enabled else None
    return Services(settings=settings, store=store, indexer=indexer, streamer=streamer, watcher=watcher)


def get_services(request: Request) -> Services:
    return request.app.state.services


def resolve_within_root(settings: Settings, raw_path: str) -> Path:
    """Resolve a user-supplied archive path, refusing anything outside the served root."""
    root = settings.root_dir.expanduser().resolve()
    candidate = Path(raw_path).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    candidate = candidate.resolve()
    if not candidate.is_relative_to(root):
        raise HTTPException(status_code=403, detail="Path outside served root")
    return candidate


__all__ = [
    "Services",
    "build_services",
    "get_services",
    "resolve_within_root",
]
