"""CLI entrypoint for archive-serve."""

from __future__ import annotations

import json
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import requests
import typer
import uvicorn

from archive_serve.archive.indexer import Indexer, canonical_path
from archive_serve.archive.streamer import Streamer
from archive_serve.core.config import Settings
from archive_serve.core.errors import ArchiveError
from archive_serve.core.logging import configure_logging
from archive_serve.db.metadata import MetadataStore

app = typer.Typer(name="arcs", help="Serve ZIP archives as browsable directories")

DEFAULT_HOST = "http://127.0.0.1:8080"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("ARCS_HOST_URL")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _load_settings(config: Optional[Path], cache_dir: Optional[Path] = None) -> Settings:
    settings = Settings.from_yaml(config)
    if cache_dir is not None:
        settings.cache_dir = cache_dir
    configure_logging(settings.log_level, use_json=settings.log_json)
    return settings


@contextmanager
def _open_store(settings: Settings) -> Iterator[MetadataStore]:
    store = MetadataStore.open(settings.db_path)
    try:
        yield store
    finally:
        store.close()


def _fail(exc: ArchiveError) -> None:
    typer.echo(f"{exc.kind}: {exc}", err=True)
    raise typer.Exit(code=1)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to bind"),
    root: Optional[Path] = typer.Option(None, "--root", help="Directory tree to serve"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Where the index database lives"),
    create_indexes: Optional[bool] = typer.Option(
        None, "--indexes/--no-indexes", help="Render listings for directories"
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
) -> None:
    """Run the HTTP server."""
    from archive_serve.app import create_app

    settings = _load_settings(config, cache_dir)
    if root is not None:
        settings.root_dir = root
    if host is not None:
        settings.host = host
    if port is not None:
        settings.port = port
    if create_indexes is not None:
        settings.create_indexes = create_indexes
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


@app.command()
def index(
    archive: Path = typer.Argument(..., help="ZIP archive to index"),
    force: bool = typer.Option(False, "--force", help="Rebuild even if the cached index is fresh"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Where the index database lives"),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
) -> None:
    """Index an archive into the local cache."""
    settings = _load_settings(config, cache_dir)
    with _open_store(settings) as store:
        indexer = Indexer(store)
        try:
            container_id = indexer.reindex(archive) if force else indexer.ensure_indexed(archive)
        except ArchiveError as exc:
            _fail(exc)
        payload = {
            "container_id": container_id,
            "path": canonical_path(archive),
            "entry_count": store.count_entries(container_id),
        }
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def entries(
    archive: Path = typer.Argument(..., help="ZIP archive to list"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Where the index database lives"),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
) -> None:
    """List the cached entries of an archive, indexing it first if needed."""
    settings = _load_settings(config, cache_dir)
    with _open_store(settings) as store:
        try:
            container_id = Indexer(store).ensure_indexed(archive)
        except ArchiveError as exc:
            _fail(exc)
        rows = [
            {
                "name": entry.name,
                "encoding": entry.encoding,
                "compressed_size": entry.compressed_size,
                "uncompressed_size": entry.uncompressed_size,
            }
            for entry in store.list_entries(container_id)
        ]
    typer.echo(json.dumps(rows, indent=2))


@app.command()
def cat(
    archive: Path = typer.Argument(..., help="ZIP archive"),
    entry: str = typer.Argument(..., help="Entry name inside the archive"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Where the index database lives"),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
) -> None:
    """Write one archive entry to stdout."""
    settings = _load_settings(config, cache_dir)
    out = sys.stdout.buffer
    with _open_store(settings) as store:
        streamer = Streamer(store, chunk_size=settings.chunk_size, verify_checksums=settings.verify_checksums)
        try:
            streamer.stream(archive, entry, out)
        except ArchiveError as exc:
            _fail(exc)
    out.flush()


@app.command()
def containers(
    host: Optional[str] = typer.Option(None, "--host", help="Override server URL"),
) -> None:
    """List the containers cached by a running server."""
    url = f"{_resolve_host(host)}/_cache/containers"
    resp = requests.get(url, timeout=60)
    if not resp.ok:
        typer.echo(f"Request failed ({resp.status_code}): {resp.text}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    app()
