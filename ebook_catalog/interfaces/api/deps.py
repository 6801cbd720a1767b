from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.requests import Request

if TYPE_CHECKING:
    from ebook_catalog.query.live import LiveAggregator
    from ebook_catalog.query.service import QueryService
    from ebook_catalog.shared.settings import Settings
    from ebook_catalog.storage.sqlite import SQLiteStore
    from ebook_catalog.sync.importer import CatalogImporter
    from ebook_catalog.sync.service import SyncOrchestrator


def get_query_service(request: Request) -> QueryService:
    return request.app.state.query  # type: ignore[no-any-return]


def get_live_aggregator(request: Request) -> LiveAggregator:
    return request.app.state.live  # type: ignore[no-any-return]


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator  # type: ignore[no-any-return]


def get_importer(request: Request) -> CatalogImporter:
    return request.app.state.importer  # type: ignore[no-any-return]


def get_sqlite_store(request: Request) -> SQLiteStore:
    return request.app.state.sqlite_store  # type: ignore[no-any-return]


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore[no-any-return]
