"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ContainerResponse(BaseModel):
    id: int
    path: str
    size: int
    modified_at: datetime
    indexed_at: datetime
    entry_count: int
    fresh: bool


class EntryResponse(BaseModel):
    name: str
    offset: int
    compressed_size: int
    uncompressed_size: int
    encoding: Literal["stored", "deflate", "unsupported"]
    method: int


class ContainerEntriesResponse(BaseModel):
    container: ContainerResponse
    entries: list[EntryResponse]


class ReindexRequest(BaseModel):
    path: str = Field(description="Archive path, absolute or relative to the served root")
    force: bool = Field(default=True, description="Rebuild even when the cached index is fresh")


class ReindexResponse(BaseModel):
    container_id: int
    path: str
    entry_count: int


class PurgeResponse(BaseModel):
    status: Literal["ok", "noop"]
    deleted: int


__all__ = [
    "ContainerResponse",
    "EntryResponse",
    "ContainerEntriesResponse",
    "ReindexRequest",
    "ReindexResponse",
    "PurgeResponse",
]
