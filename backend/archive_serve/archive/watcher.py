"""Filesystem watcher that keeps container indexes warm."""

from __future__ import annotations

import threading
from pathlib import Path

from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from archive_serve.archive.indexer import Indexer
from archive_serve.core.errors import ArchiveError
from archive_serve.core.logging import get_logger

logger = get_logger(__name__)


class ContainerEventHandler(PatternMatchingEventHandler):
    """Reindex archives as they appear or change; forget them when removed."""

    def __init__(self, indexer: Indexer, suffix: str) -> None:
        super().__init__(
            patterns=[f"*{suffix}"],
            ignore_directories=True,
            case_sensitive=True,
        )
        self.indexer = indexer

    def on_created(self, event: FileSystemEvent) -> None:
        self._refresh(Path(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        self._refresh(Path(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        self.indexer.forget(Path(event.src_path))
        self._refresh(Path(event.dest_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if self.indexer.forget(Path(event.src_path)):
            logger.info("Forgot index for removed container %s", event.src_path)

    def _refresh(self, path: Path) -> None:
        try:
            self.indexer.ensure_indexed(path)
        except ArchiveError as exc:
            # partially written archives are expected here; the next event retries
            logger.debug("Deferred indexing of %s: %s", path, exc)


class ContainerWatcher:
    """High-level wrapper around a watchdog observer rooted at the served tree."""

    def __init__(self, root: Path, indexer: Indexer, suffix: str = ".zip") -> None:
        self.root = root.expanduser().resolve()
        self.handler = ContainerEventHandler(indexer, suffix)
        self._observer: BaseObserver | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        with self._lock:
            if self._observer is not None:
                return
            observer = Observer()
            observer.schedule(self.handler, str(self.root), recursive=True)
            observer.start()
            self._observer = observer
            logger.info("Watching %s for container changes", self.root)

    def stop(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=5)


__all__ = ["ContainerEventHandler", "ContainerWatcher"]
