"""Serve the content tree, expanding archives into virtual directories."""

from __future__ import annotations

import html
import mimetypes
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Literal
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse, HTMLResponse, RedirectResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from archive_serve.api.dependencies import Services, get_services
from archive_serve.core.config import Settings
from archive_serve.core.errors import ArchiveError
from archive_serve.core.logging import error_context, get_logger
from archive_serve.core.metrics import REQUEST_COUNT, REQUEST_LATENCY

logger = get_logger(__name__)

router = APIRouter()

TargetKind = Literal["file", "listing", "redirect", "archive", "missing"]


@dataclass(slots=True, frozen=True)
class Target:
    kind: TargetKind
    path: Path | None = None
    entry_name: str | None = None
    location: str | None = None


def resolve_target(settings: Settings, url_path: str) -> Target:
    """Walk ``url_path`` from the served root and decide how to answer it.

    The first segment that names neither a file nor a directory but has a
    sibling ``<segment><archive_suffix>`` switches into that archive; the
    remaining segments become the entry name.
    """
    url_path = url_path.lstrip("/")
    parts = url_path.split("/")
    last = len(parts) - 1
    current = settings.root_dir.expanduser().resolve()

    for i, part in enumerate(parts):
        if part == ".." or "\x00" in part:
            return Target("missing")
        if not settings.expose_hidden_files and part.startswith("."):
            return Target("missing")
        current = current / part

        if current.is_dir():
            if i == last and settings.create_indexes:
                return Target("listing", path=current)
            continue
        if current.exists():
            return Target("file", path=current)

        candidate = current.with_name(current.name + settings.archive_suffix)
        if candidate.is_file():
            if i == last:
                return Target("redirect", location=f"/{quote(url_path)}/")
            entry_name = "/".join(parts[i + 1 :]) or settings.default_entry
            return Target("archive", path=candidate, entry_name=entry_name)

    if settings.create_indexes and current.is_dir():
        return Target("listing", path=current)
    return Target("missing")


def render_listing(directory: Path, url_path: str, settings: Settings) -> str:
    base = "/" + url_path.strip("/")
    prefix = base.rstrip("/")
    items: list[str] = []
    for child in sorted(directory.iterdir(), key=lambda p: p.name):
        name = child.name
        if not settings.expose_hidden_files and name.startswith("."):
            continue
        label = name
        href = f"{prefix}/{quote(name)}"
        extra = ""
        if child.is_dir():
            label = f"{name}/"
            href = f"{href}/"
        elif name.endswith(settings.archive_suffix):
            stem = name[: -len(settings.archive_suffix)]
            extra = f' (<a href="{html.escape(href)}">download</a>)'
            href = f"{prefix}/{quote(stem)}/"
        items.append(f'<li><a href="{html.escape(href)}">{html.escape(label)}</a>{extra}</li>')
    title = html.escape(base)
    return f"<html><body><h1>Index of {title}</h1><ul>{''.join(items)}</ul></body></html>"


@router.api_route("/{url_path:path}", methods=["GET", "HEAD"], include_in_schema=False)
def serve_path(url_path: str, request: Request, services: Services = Depends(get_services)) -> Response:
    settings = services.settings
    target = resolve_target(settings, url_path)
    start = time.perf_counter()
    try:
        response = _respond(target, url_path, services, head_only=request.method == "HEAD")
    except HTTPException as exc:
        REQUEST_COUNT.labels(kind=target.kind, status=str(exc.status_code)).inc()
        raise
    REQUEST_LATENCY.labels(kind=target.kind).observe(time.perf_counter() - start)
    REQUEST_COUNT.labels(kind=target.kind, status=str(response.status_code)).inc()
    return response


def _respond(target: Target, url_path: str, services: Services, head_only: bool = False) -> Response:
    if target.kind == "file":
        return FileResponse(target.path)
    if target.kind == "redirect":
        return RedirectResponse(target.location, status_code=301)
    if target.kind == "listing":
        try:
            body = render_listing(target.path, url_path, services.settings)
        except OSError as exc:
            logger.error("Failed to list %s: %s", target.path, exc)
            raise HTTPException(status_code=500, detail="Failed to read directory") from exc
        return HTMLResponse(body)
    if target.kind == "archive":
        return _stream_entry(target, services, head_only)
    raise HTTPException(status_code=404, detail="Not Found")


def _stream_entry(target: Target, services: Services, head_only: bool = False) -> Response:
    try:
        reader = services.streamer.open_entry(target.path, target.entry_name)
    except ArchiveError as exc:
        logger.warning(
            "Cannot serve %s from %s: %s",
            target.entry_name,
            target.path,
            exc,
            extra=error_context(exc),
        )
        raise HTTPException(status_code=404, detail="Not Found") from exc
    media_type = mimetypes.guess_type(target.entry_name)[0] or "application/octet-stream"
    headers = {"Content-Length": str(reader.size)}
    if head_only:
        reader.close()
        return Response(media_type=media_type, headers=headers)
    return StreamingResponse(
        iter(reader),
        media_type=media_type,
        headers=headers,
        background=BackgroundTask(reader.close),
    )


__all__ = ["router", "resolve_target", "render_listing", "Target"]
