"""Concurrent access to the index and streamer."""

from __future__ import annotations

import gc
import io
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from archive_serve.archive.indexer import Indexer, canonical_path
from archive_serve.archive.streamer import Streamer
from archive_serve.core.errors import ContainerCorrupt
from archive_serve.core.metrics import REGISTRY
from archive_serve.db.metadata import MetadataStore

WORKERS = 16


def _builds(outcome: str) -> float:
    return REGISTRY.get_sample_value("arcs_index_builds_total", {"outcome": outcome}) or 0.0


def _stream_once(streamer: Streamer, archive: Path, name: str) -> bytes:
    sink = io.BytesIO()
    streamer.stream(archive, name, sink)
    return sink.getvalue()


def test_first_access_herd_builds_one_generation(make_zip, streamer: Streamer, store: MetadataStore) -> None:
    files = {f"page{i}.html": f"<p>page {i}</p>" * 50 for i in range(200)}
    archive = make_zip("herd.zip", files)
    builds_before = _builds("ok")
    start = threading.Barrier(WORKERS)

    def worker(i: int) -> bytes:
        start.wait()
        return _stream_once(streamer, archive, f"page{i % 200}.html")

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        results = list(pool.map(worker, range(WORKERS)))

    assert results == [files[f"page{i}.html"].encode() for i in range(WORKERS)]
    assert _builds("ok") == builds_before + 1
    (record,) = store.list_containers()
    assert store.count_entries(record.id) == len(files)
    assert len(streamer.indexer._locks) == 0


def test_concurrent_corrupt_container_fails_identically(
    tmp_path: Path, streamer: Streamer, store: MetadataStore
) -> None:
    bogus = tmp_path / "bogus.zip"
    bogus.write_bytes(b"not a zip at all" * 64)
    start = threading.Barrier(8)

    def worker(_: int) -> str:
        start.wait()
        try:
            _stream_once(streamer, bogus, "index.html")
        except ContainerCorrupt as exc:
            return exc.kind
        return "ok"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(worker, range(8)))

    assert outcomes == ["container_corrupt"] * 8
    assert store.list_containers() == []
    assert len(streamer.indexer._locks) == 0


def test_unrelated_container_is_not_blocked(make_zip, streamer: Streamer) -> None:
    busy = make_zip("busy.zip", {"a.txt": "busy"})
    idle = make_zip("idle.zip", {"b.txt": "idle"})
    indexer: Indexer = streamer.indexer

    # simulate a long-running index build of "busy.zip" by holding its lock
    with indexer._locks.hold(canonical_path(busy)):
        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(_stream_once, streamer, idle, "b.txt")
            assert future.result(timeout=10) == b"idle"


def test_fresh_readers_do_not_take_index_lock(make_zip, streamer: Streamer) -> None:
    archive = make_zip("fresh.zip", {"a.txt": "fresh"})
    assert _stream_once(streamer, archive, "a.txt") == b"fresh"

    with streamer.indexer._locks.hold(canonical_path(archive)):
        with ThreadPoolExecutor(max_workers=4) as pool:
            futures = [pool.submit(_stream_once, streamer, archive, "a.txt") for _ in range(4)]
            assert [future.result(timeout=10) for future in futures] == [b"fresh"] * 4


def test_reader_sees_complete_generation_during_rewrite(make_zip, streamer: Streamer) -> None:
    archive = make_zip("swap.zip", {f"f{i}.txt": "v1" for i in range(100)})
    streamer.indexer.ensure_indexed(archive)
    stop = threading.Event()
    errors: list[BaseException] = []

    def reindex_loop() -> None:
        while not stop.is_set():
            streamer.indexer.reindex(archive)

    def read_loop() -> None:
        for _ in range(50):
            try:
                data = _stream_once(streamer, archive, "f99.txt")
            except Exception as exc:
                errors.append(exc)
            else:
                if data != b"v1":
                    errors.append(AssertionError(data))

    writer = threading.Thread(target=reindex_loop)
    writer.start()
    try:
        readers = [threading.Thread(target=read_loop) for _ in range(4)]
        for thread in readers:
            thread.start()
        for thread in readers:
            thread.join(timeout=30)
    finally:
        stop.set()
        writer.join(timeout=30)

    assert errors == []


def test_replacement_between_freshness_check_and_entry_lookup(
    make_zip, streamer: Streamer, monkeypatch: pytest.MonkeyPatch
) -> None:
    archive = make_zip("race.zip", {"keep.txt": "kept", "other.txt": "other"})
    indexer = streamer.indexer
    indexer.ensure_indexed(archive)
    ensure_indexed = indexer.ensure_indexed

    def ensure_then_replace(path):
        container_id = ensure_indexed(path)
        indexer.reindex(path)
        return container_id

    monkeypatch.setattr(indexer, "ensure_indexed", ensure_then_replace)
    assert _stream_once(streamer, archive, "keep.txt") == b"kept"


def test_connections_of_finished_threads_are_closed(make_zip, streamer: Streamer, store: MetadataStore) -> None:
    archive = make_zip("churn.zip", {"a.txt": "churn"})
    assert _stream_once(streamer, archive, "a.txt") == b"churn"
    baseline = store.db.open_connections

    for _ in range(50):
        thread = threading.Thread(target=_stream_once, args=(streamer, archive, "a.txt"))
        thread.start()
        thread.join(timeout=10)

    deadline = time.monotonic() + 5
    while store.db.open_connections > baseline + 1 and time.monotonic() < deadline:
        gc.collect()
        time.sleep(0.01)
    assert store.db.open_connections <= baseline + 1
    # the surviving connection still serves this thread
    assert _stream_once(streamer, archive, "a.txt") == b"churn"


@pytest.mark.parametrize("workers", [4])
def test_parallel_indexing_of_distinct_containers(tmp_path: Path, store: MetadataStore, make_zip, workers: int) -> None:
    indexer = Indexer(store)
    archives = [make_zip(f"c{i}.zip", {"index.html": f"container {i}"}) for i in range(workers * 2)]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        ids = list(pool.map(indexer.ensure_indexed, archives))
    assert len(set(ids)) == len(archives)
    assert len(store.list_containers()) == len(archives)
