"""Random-access extraction of single archive entries."""

from __future__ import annotations

import zlib
from pathlib import Path
from typing import BinaryIO, Iterator, Protocol

from archive_serve.archive.indexer import Indexer, canonical_path
from archive_serve.core.errors import ContainerUnreadable, EntryNotFound, UnsupportedEncoding
from archive_serve.core.metrics import STREAMED_BYTES
from archive_serve.db.metadata import MetadataStore
from archive_serve.models.entities import DEFLATE, STORED, EntryRecord

DEFAULT_CHUNK_SIZE = 64 * 1024


class Sink(Protocol):
    def write(self, data: bytes, /) -> object: ...


class EntryReader:
    """Decoded chunks of one entry, read straight from its payload offset.

    Iterate once; the underlying file is closed when iteration ends, fails,
    or ``close()`` is called, whichever happens first.
    """

    def __init__(
        self,
        path: str,
        entry: EntryRecord,
        handle: BinaryIO,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        verify_checksum: bool = True,
    ) -> None:
        self.path = path
        self.entry = entry
        self.chunk_size = chunk_size
        self.verify_checksum = verify_checksum
        self._handle: BinaryIO | None = handle
        self._started = False

    @property
    def size(self) -> int:
        return self.entry.uncompressed_size

    @property
    def closed(self) -> bool:
        return self._handle is None

    def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.close()

    def __enter__(self) -> "EntryReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[bytes]:
        if self._started:
            raise RuntimeError("EntryReader can only be iterated once")
        self._started = True
        return self._chunks()

    def _chunks(self) -> Iterator[bytes]:
        try:
            raw = self._read_raw()
            decoded = raw if self.entry.encoding == STORED else self._inflate(raw)
            crc = 0
            total = 0
            for chunk in decoded:
                total += len(chunk)
                if total > self.entry.uncompressed_size:
                    raise self._mismatch("decoded data exceeds the indexed size")
                crc = zlib.crc32(chunk, crc)
                STREAMED_BYTES.inc(len(chunk))
                yield chunk
            if total != self.entry.uncompressed_size:
                raise self._mismatch(f"decoded {total} of {self.entry.uncompressed_size} bytes")
            if self.verify_checksum and crc != self.entry.crc32:
                raise self._mismatch("CRC-32 mismatch")
        finally:
            self.close()

    def _read_raw(self) -> Iterator[bytes]:
        remaining = self.entry.compressed_size
        while remaining > 0:
            if self._handle is None:
                raise self._mismatch("reader closed during read")
            try:
                chunk = self._handle.read(min(self.chunk_size, remaining))
            except OSError as exc:
                raise self._mismatch(f"read failed: {exc}") from exc
            if not chunk:
                raise self._mismatch(f"short read, {remaining} bytes missing")
            remaining -= len(chunk)
            yield chunk

    def _inflate(self, raw: Iterator[bytes]) -> Iterator[bytes]:
        decoder = zlib.decompressobj(-zlib.MAX_WBITS)
        try:
            for chunk in raw:
                data = chunk
                while data:
                    out = decoder.decompress(data, self.chunk_size)
                    if out:
                        yield out
                    data = decoder.unconsumed_tail
            tail = decoder.flush()
            if tail:
                yield tail
        except zlib.error as exc:
            raise self._mismatch(f"deflate stream invalid: {exc}") from exc
        if not decoder.eof:
            raise self._mismatch("deflate stream truncated")

    def _mismatch(self, detail: str) -> ContainerUnreadable:
        return ContainerUnreadable(
            f"Entry {self.entry.name!r} does not match its index: {detail}",
            path=self.path,
            name=self.entry.name,
        )


class Streamer:
    """Resolve entries through the index and copy their decoded bytes out."""

    def __init__(
        self,
        store: MetadataStore,
        indexer: Indexer | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        verify_checksums: bool = True,
    ) -> None:
        self.store = store
        self.indexer = indexer or Indexer(store)
        self.chunk_size = chunk_size
        self.verify_checksums = verify_checksums

    def lookup(self, path: Path | str, entry_name: str) -> EntryRecord:
        key = canonical_path(path)
        self.indexer.ensure_indexed(key)
        # a generation replaced after ensure_indexed returns is still complete
        entry = self.store.lookup_entry_at(key, entry_name)
        if entry is None:
            raise EntryNotFound(
                f"{entry_name!r} not found in container",
                path=key,
                name=entry_name,
            )
        return entry

    def open_entry(self, path: Path | str, entry_name: str) -> EntryReader:
        """Resolve ``entry_name`` and return a reader positioned at its payload."""
        entry = self.lookup(path, entry_name)
        key = canonical_path(path)
        if entry.encoding not in (STORED, DEFLATE):
            raise UnsupportedEncoding(
                f"{entry_name!r} uses unsupported compression method {entry.method}",
                path=key,
                name=entry_name,
            )
        try:
            handle = open(key, "rb")
        except OSError as exc:
            raise ContainerUnreadable(f"Failed to open container: {exc}", path=key, name=entry_name) from exc
        try:
            handle.seek(entry.offset)
        except OSError as exc:
            handle.close()
            raise ContainerUnreadable(f"Failed to seek to payload: {exc}", path=key, name=entry_name) from exc
        return EntryReader(
            key,
            entry,
            handle,
            chunk_size=self.chunk_size,
            verify_checksum=self.verify_checksums,
        )

    def stream(self, path: Path | str, entry_name: str, sink: Sink) -> int:
        """Write the decoded entry to ``sink`` and return the byte count."""
        written = 0
        with self.open_entry(path, entry_name) as reader:
            for chunk in reader:
                sink.write(chunk)
                written += len(chunk)
        return written


__all__ = ["DEFAULT_CHUNK_SIZE", "EntryReader", "Sink", "Streamer"]
