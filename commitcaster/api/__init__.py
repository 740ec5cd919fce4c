"""commitcaster HTTP surface — FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from commitcaster import __version__
from commitcaster.api.deps import (
    build_runtime,
    dispose_engine,
    get_engine,
    init_session_factory,
    require_admin,
    set_runtime,
)
from commitcaster.api.errors import register_error_handlers
from commitcaster.api.middleware.request_id import RequestIDMiddleware
from commitcaster.api.routers import (
    auth,
    credentials,
    queue,
    repos,
    stats,
    templates,
    users,
    webhook,
)
from commitcaster.core.config import Settings, get_settings
from commitcaster.core.database import create_schema
from commitcaster.core.logging import setup_logging
from commitcaster.scheduler import create_scheduler

log = structlog.get_logger("commitcaster.app")


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: schema, runtime, queue restore, scheduler. Shutdown in reverse."""
    settings: Settings = app.state.settings
    factory = init_session_factory(settings.database_url)
    await create_schema(get_engine())

    runtime = build_runtime(settings, factory)
    runtime.pipeline.register()
    set_runtime(runtime)
    await runtime.queue.restore()

    scheduler = create_scheduler(settings, runtime.queue, runtime.pending_auth)
    await scheduler.start()
    log.info(
        "app.started",
        environment=settings.environment,
        database=settings.database_path,
        ai_enabled=runtime.transformer.available,
    )
    yield
    await scheduler.stop()
    await runtime.close()
    set_runtime(None)
    await dispose_engine()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build and return the FastAPI application."""
    setup_logging()
    settings = settings or get_settings()

    app = FastAPI(
        title="commitcaster",
        version=__version__,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
        lifespan=_lifespan,
    )
    app.state.settings = settings

    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    @app.get("/", tags=["ops"])
    async def root() -> JSONResponse:
        return JSONResponse({"status": "ok", "message": "commitcaster is running", "version": __version__})

    @app.get("/api/health", tags=["ops"])
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    admin = [Depends(require_admin)]
    app.include_router(webhook.router, prefix="/webhook", tags=["webhook"])
    app.include_router(auth.router, prefix="/auth", tags=["auth"])
    app.include_router(stats.router, prefix="/api/stats", tags=["stats"], dependencies=admin)
    app.include_router(users.router, prefix="/api/users", tags=["users"], dependencies=admin)
    app.include_router(templates.router, prefix="/api/users", tags=["templates"], dependencies=admin)
    app.include_router(
        templates.presets_router, prefix="/api/templates", tags=["templates"], dependencies=admin
    )
    app.include_router(repos.router, prefix="/api/repos", tags=["repos"], dependencies=admin)
    app.include_router(
        credentials.router, prefix="/api/credentials", tags=["credentials"], dependencies=admin
    )
    app.include_router(queue.router, prefix="/api/queue", tags=["queue"], dependencies=admin)

    return app
