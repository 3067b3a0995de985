"""Administrative routes for archive-serve."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from archive_serve.api.dependencies import Services, get_services, resolve_within_root
from archive_serve.archive.indexer import canonical_path
from archive_serve.core.errors import ArchiveError, ContainerCorrupt
from archive_serve.core.metrics import metrics_response
from archive_serve.models.dto import (
    ContainerEntriesResponse,
    ContainerResponse,
    EntryResponse,
    PurgeResponse,
    ReindexRequest,
    ReindexResponse,
)
from archive_serve.models.entities import ContainerRecord
from archive_serve.utils.time import ms_to_datetime, ns_to_datetime

router = APIRouter()


@router.get("/health", tags=["admin"])
def health() -> dict[str, bool]:
    """Simple liveness check."""
    return {"ok": True}


@router.get("/metrics", summary="Prometheus metrics")
def get_metrics():
    return metrics_response()


@router.get("/_cache/containers", response_model=list[ContainerResponse], summary="List cached containers")
def list_containers(services: Services = Depends(get_services)) -> list[ContainerResponse]:
    return [_to_container_response(record, services) for record in services.store.list_containers()]


@router.get(
    "/_cache/entries",
    response_model=ContainerEntriesResponse,
    summary="List the cached entries of one container",
)
def list_entries(
    path: str = Query(..., description="Archive path, absolute or relative to the served root"),
    services: Services = Depends(get_services),
) -> ContainerEntriesResponse:
    archive_path = resolve_within_root(services.settings, path)
    record = services.store.lookup_container(canonical_path(archive_path))
    if record is None:
        raise HTTPException(status_code=404, detail="Container not indexed")
    entries = [
        EntryResponse(
            name=entry.name,
            offset=entry.offset,
            compressed_size=entry.compressed_size,
            uncompressed_size=entry.uncompressed_size,
            encoding=entry.encoding,
            method=entry.method,
        )
        for entry in services.store.list_entries(record.id)
    ]
    return ContainerEntriesResponse(container=_to_container_response(record, services), entries=entries)


@router.post("/_cache/reindex", response_model=ReindexResponse, summary="Index a container now")
def reindex(request: ReindexRequest, services: Services = Depends(get_services)) -> ReindexResponse:
    archive_path = resolve_within_root(services.settings, request.path)
    try:
        if request.force:
            container_id = services.indexer.reindex(archive_path)
        else:
            container_id = services.indexer.ensure_indexed(archive_path)
    except ArchiveError as exc:
        status = 422 if isinstance(exc, ContainerCorrupt) else 404
        raise HTTPException(status_code=status, detail=str(exc)) from exc
    return ReindexResponse(
        container_id=container_id,
        path=canonical_path(archive_path),
        entry_count=services.store.count_entries(container_id),
    )


@router.delete("/_cache", response_model=PurgeResponse, summary="Drop every cached index")
def purge_cache(services: Services = Depends(get_services)) -> PurgeResponse:
    try:
        deleted = services.store.purge()
    except ArchiveError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return PurgeResponse(status="ok" if deleted else "noop", deleted=deleted)


def _to_container_response(record: ContainerRecord, services: Services) -> ContainerResponse:
    return ContainerResponse(
        id=record.id,
        path=record.path,
        size=record.size,
        modified_at=ns_to_datetime(record.modified_at),
        indexed_at=ms_to_datetime(record.indexed_at),
        entry_count=record.entry_count,
        fresh=services.indexer.is_fresh(record.path),
    )


__all__ = ["router"]
