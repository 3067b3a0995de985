"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

Encoding = Literal["stored", "deflate", "unsupported"]

STORED: Encoding = "stored"
DEFLATE: Encoding = "deflate"
UNSUPPORTED: Encoding = "unsupported"


@dataclass(slots=True, frozen=True)
class ContainerRecord:
    id: int
    path: str
    size: int
    modified_at: int
    indexed_at: int
    entry_count: int = 0

    def matches(self, size: int, modified_at: int) -> bool:
        """True when the stored fingerprint equals the given stat values."""
        return self.size == size and self.modified_at == modified_at


@dataclass(slots=True, frozen=True)
class EntryRecord:
    name: str
    offset: int
    compressed_size: int
    uncompressed_size: int
    encoding: Encoding
    method: int
    crc32: int
    container_id: int | None = None


__all__ = [
    "ContainerRecord",
    "EntryRecord",
    "Encoding",
    "STORED",
    "DEFLATE",
    "UNSUPPORTED",
]
