"""FastAPI application setup for archive-serve."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from archive_serve.api.dependencies import build_services
from archive_serve.api.routes_admin import router as admin_router
from archive_serve.api.routes_files import router as files_router
from archive_serve.core.config import Settings, get_settings
from archive_serve.core.logging import configure_logging, get_logger

logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build an application; its store and watcher live as long as the lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        resolved = settings or get_settings()
        configure_logging(resolved.log_level, use_json=resolved.log_json)
        services = build_services(resolved)
        app.state.services = services
        if services.watcher is not None:
            services.watcher.start()
        logger.info(
            "Serving %s with cache %s",
            resolved.root_dir.resolve(),
            resolved.db_path,
        )
        try:
            yield
        finally:
            services.close()
            del app.state.services

    app = FastAPI(
        title="archive-serve",
        version="0.1.0",
        docs_url="/_docs",
        redoc_url=None,
        lifespan=lifespan,
    )
    app.include_router(admin_router, prefix="", tags=["admin"])
    # catch-all, must stay last
    app.include_router(files_router, prefix="", tags=["files"])
    return app


app = create_app()
