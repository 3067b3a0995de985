"""Archive indexing and random-access extraction."""

from archive_serve.core.errors import (
    ArchiveError,
    ContainerCorrupt,
    ContainerUnreadable,
    EntryNotFound,
    UnsupportedEncoding,
)
from .indexer import Indexer, canonical_path
from .streamer import EntryReader, Streamer

__all__ = [
    "ArchiveError",
    "ContainerCorrupt",
    "ContainerUnreadable",
    "EntryNotFound",
    "UnsupportedEncoding",
    "Indexer",
    "canonical_path",
    "EntryReader",
    "Streamer",
]
