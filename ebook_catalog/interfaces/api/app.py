from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ebook_catalog.app.bootstrap import build_catalog_runtime
from ebook_catalog.interfaces.api.routers import catalog, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    runtime = build_catalog_runtime(check_same_thread=False)

    app.state.settings = runtime.settings
    app.state.sqlite_store = runtime.sqlite_store
    app.state.query = runtime.query
    app.state.live = runtime.live
    app.state.orchestrator = runtime.orchestrator
    app.state.importer = runtime.importer

    if runtime.scheduler is not None:
        runtime.scheduler.start()

    logger.info("ebook-catalog API started (sqlite=%s)", runtime.settings.sqlite_path)
    yield

    await runtime.aclose()
    logger.info("ebook-catalog API shut down")


def create_app() -> FastAPI:
    app = FastAPI(title="ebook-catalog", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/api")
    app.include_router(catalog.router, prefix="/api")

    return app
