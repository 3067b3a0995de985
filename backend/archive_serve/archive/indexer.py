"""Container indexing with staleness detection."""

from __future__ import annotations

import os
import stat
import time
from pathlib import Path

from archive_serve.archive.zipdir import read_directory
from archive_serve.core.errors import ContainerCorrupt, ContainerUnreadable
from archive_serve.core.logging import error_context, get_logger
from archive_serve.core.metrics import CACHE_HITS, INDEX_BUILDS, INDEX_DURATION
from archive_serve.db.metadata import MetadataStore
from archive_serve.utils.locks import KeyedLock

logger = get_logger(__name__)


def canonical_path(path: Path | str) -> str:
    """Return the key a container is stored under."""
    return str(Path(path).expanduser().resolve())


class Indexer:
    """Keep the metadata store in step with container files on disk."""

    def __init__(self, store: MetadataStore) -> None:
        self.store = store
        self._locks = KeyedLock()

    def ensure_indexed(self, path: Path | str) -> int:
        """Return the id of a fresh generation for ``path``, building one if needed."""
        key = canonical_path(path)
        current = _stat_container(key)
        existing = self.store.lookup_container(key)
        if existing is not None and existing.matches(current.st_size, current.st_mtime_ns):
            CACHE_HITS.inc()
            return existing.id
        with self._locks.hold(key):
            return self._build(key, force=False)

    def reindex(self, path: Path | str) -> int:
        """Rebuild the generation for ``path`` even if it looks fresh."""
        key = canonical_path(path)
        with self._locks.hold(key):
            return self._build(key, force=True)

    def is_fresh(self, path: Path | str) -> bool:
        key = canonical_path(path)
        try:
            current = _stat_container(key)
        except ContainerUnreadable:
            return False
        existing = self.store.lookup_container(key)
        return existing is not None and existing.matches(current.st_size, current.st_mtime_ns)

    def forget(self, path: Path | str) -> bool:
        key = canonical_path(path)
        with self._locks.hold(key):
            return self.store.forget_container(key)

    def _build(self, key: str, force: bool) -> int:
        # stat before parsing: a file rewritten mid-parse is recorded with the
        # older fingerprint and therefore reindexed on the next access
        current = _stat_container(key)
        if not force:
            existing = self.store.lookup_container(key)
            if existing is not None and existing.matches(current.st_size, current.st_mtime_ns):
                CACHE_HITS.inc()
                return existing.id

        start = time.perf_counter()
        try:
            entries = read_directory(Path(key))
        except ContainerCorrupt as exc:
            INDEX_BUILDS.labels(outcome="corrupt").inc()
            logger.warning("Container %s failed to parse; keeping previous index", key, extra=error_context(exc))
            raise
        except ContainerUnreadable:
            INDEX_BUILDS.labels(outcome="unreadable").inc()
            raise

        try:
            with self.store.transaction() as txn:
                container_id = txn.replace_container(key, current.st_size, current.st_mtime_ns)
                txn.insert_entries(container_id, entries)
        except ContainerUnreadable as exc:
            INDEX_BUILDS.labels(outcome="store_error").inc()
            exc.path = key
            logger.error("Failed to persist index for %s: %s", key, exc)
            raise

        duration = time.perf_counter() - start
        INDEX_DURATION.observe(duration)
        INDEX_BUILDS.labels(outcome="ok").inc()
        logger.info(
            "Indexed %s entries from %s",
            len(entries),
            key,
            extra={"ctx_container_id": container_id, "ctx_duration_s": round(duration, 4)},
        )
        return container_id


def _stat_container(path: str) -> os.stat_result:
    try:
        result = os.stat(path)
    except OSError as exc:
        raise ContainerUnreadable(f"Failed to stat container: {exc}", path=path) from exc
    if not stat.S_ISREG(result.st_mode):
        raise ContainerUnreadable("Container is not a regular file", path=path)
    return result


__all__ = ["Indexer", "canonical_path"]
