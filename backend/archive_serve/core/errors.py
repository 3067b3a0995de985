"""Failure kinds raised by the archive core."""

from __future__ import annotations


class ArchiveError(Exception):
    """Base class for archive lookups that cannot be served."""

    kind = "archive_error"

    def __init__(self, message: str, path: str | None = None, name: str | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.name = name


class ContainerUnreadable(ArchiveError):
    """The container is missing, cannot be statted, or no longer matches its index."""

    kind = "container_unreadable"


class ContainerCorrupt(ArchiveError):
    """The container's central directory could not be parsed."""

    kind = "container_corrupt"


class EntryNotFound(ArchiveError):
    """The entry is absent from the current generation of the index."""

    kind = "entry_not_found"


class UnsupportedEncoding(ArchiveError):
    """The entry exists but is compressed with a method we cannot decode."""

    kind = "unsupported_encoding"


__all__ = [
    "ArchiveError",
    "ContainerUnreadable",
    "ContainerCorrupt",
    "EntryNotFound",
    "UnsupportedEncoding",
]
