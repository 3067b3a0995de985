"""ZIP central directory parsing and payload offset resolution."""

from __future__ import annotations

import os
import struct
import zipfile
from pathlib import Path
from typing import BinaryIO

from archive_serve.core.errors import ContainerCorrupt, ContainerUnreadable
from archive_serve.models.entities import DEFLATE, STORED, UNSUPPORTED, EntryRecord, Encoding

# local file header: signature, version, flags, method, time, date, crc,
# compressed size, uncompressed size, name length, extra length
LOCAL_HEADER = struct.Struct("<4s2B4HL2L2H")
LOCAL_HEADER_SIGNATURE = b"PK\x03\x04"
_NAME_LENGTH = 10
_EXTRA_LENGTH = 11

_ENCRYPTED_FLAG = 0x1


def encoding_for(info: zipfile.ZipInfo) -> Encoding:
    """Map a directory entry's compression method to a payload encoding."""
    if info.flag_bits & _ENCRYPTED_FLAG:
        return UNSUPPORTED
    if info.compress_type == zipfile.ZIP_STORED:
        return STORED
    if info.compress_type == zipfile.ZIP_DEFLATED:
        return DEFLATE
    return UNSUPPORTED


def read_directory(path: Path) -> list[EntryRecord]:
    """Parse the central directory of ``path`` into entry records.

    Every entry's offset points at its raw payload, past the local header,
    so a reader can seek there directly. Duplicate names keep the last
    occurrence, the same entry ``zipfile`` would open by name.
    """
    try:
        with path.open("rb") as fh:
            file_size = os.fstat(fh.fileno()).st_size
            try:
                with zipfile.ZipFile(fh) as archive:
                    infos = archive.infolist()
            except (zipfile.BadZipFile, EOFError, ValueError, struct.error) as exc:
                raise ContainerCorrupt(f"Invalid ZIP directory: {exc}", path=str(path)) from exc

            entries: dict[str, EntryRecord] = {}
            for info in infos:
                entries[info.filename] = _resolve_entry(fh, info, file_size, path)
    except OSError as exc:
        raise ContainerUnreadable(f"Failed to read container: {exc}", path=str(path)) from exc
    return list(entries.values())


def _resolve_entry(fh: BinaryIO, info: zipfile.ZipInfo, file_size: int, path: Path) -> EntryRecord:
    fh.seek(info.header_offset)
    header = fh.read(LOCAL_HEADER.size)
    if len(header) != LOCAL_HEADER.size or header[:4] != LOCAL_HEADER_SIGNATURE:
        raise ContainerCorrupt(
            f"Bad local header for {info.filename!r} at offset {info.header_offset}",
            path=str(path),
            name=info.filename,
        )
    fields = LOCAL_HEADER.unpack(header)
    offset = info.header_offset + LOCAL_HEADER.size + fields[_NAME_LENGTH] + fields[_EXTRA_LENGTH]
    if offset + info.compress_size > file_size:
        raise ContainerCorrupt(
            f"Payload of {info.filename!r} runs past end of file",
            path=str(path),
            name=info.filename,
        )
    return EntryRecord(
        name=info.filename,
        offset=offset,
        compressed_size=info.compress_size,
        uncompressed_size=info.file_size,
        encoding=encoding_for(info),
        method=info.compress_type,
        crc32=info.CRC,
    )


__all__ = ["read_directory", "encoding_for", "LOCAL_HEADER", "LOCAL_HEADER_SIGNATURE"]
