from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter, Depends

from ebook_catalog.interfaces.api.deps import get_app_settings, get_sqlite_store
from ebook_catalog.interfaces.api.schemas import HealthResponse
from ebook_catalog.shared.settings import Settings
from ebook_catalog.storage.sqlite import SQLiteStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health(
    sqlite_store: SQLiteStore = Depends(get_sqlite_store),
    settings: Settings = Depends(get_app_settings),
) -> HealthResponse:
    try:
        sqlite_store.conn.execute("SELECT 1").fetchone()
        sqlite_status = "ok"
    except sqlite3.Error as exc:
        logger.warning("SQLite health check failed: %s", exc)
        sqlite_status = "fail"

    return HealthResponse(
        status="ok" if sqlite_status == "ok" else "degraded",
        sqlite=sqlite_status,
        languages=list(settings.sync_langs),
    )
