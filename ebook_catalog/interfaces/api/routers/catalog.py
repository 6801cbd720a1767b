from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from ebook_catalog.interfaces.api.deps import (
    get_app_settings,
    get_importer,
    get_live_aggregator,
    get_orchestrator,
    get_query_service,
)
from ebook_catalog.interfaces.api.schemas import (
    AuthorPageResponse,
    CatalogStatusResponse,
    CategoriesResponse,
    CategoryCountResponse,
    CategoryPageResponse,
    EbookItem,
    ImportRequest,
    ImportResponse,
    OverviewResponse,
    PageFields,
    SearchPageResponse,
    SyncRequest,
    SyncResponse,
)
from ebook_catalog.query.live import LiveAggregator
from ebook_catalog.query.service import QueryService
from ebook_catalog.shared.errors import NotFoundError, QueryValidationError, SyncError
from ebook_catalog.shared.settings import Settings, normalize_lang
from ebook_catalog.sync.importer import CatalogImporter
from ebook_catalog.sync.service import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ebooks", tags=["ebooks"])


def _resolve_lang(lang: str | None, settings: Settings) -> str:
    return normalize_lang(lang) or settings.default_lang


@router.get("/", response_model=OverviewResponse)
async def catalog_overview(
    lang: str | None = None,
    per_category: int | None = Query(None, alias="perCategory"),
    trending: int | None = None,
    max_categories: int | None = Query(None, alias="maxCategories"),
    query: QueryService = Depends(get_query_service),
    settings: Settings = Depends(get_app_settings),
) -> OverviewResponse:
    overview = await query.overview(
        _resolve_lang(lang, settings),
        per_category=per_category,
        trending_limit=trending,
        max_categories=max_categories,
    )
    return OverviewResponse.from_overview(overview)


@router.get("/categories", response_model=CategoriesResponse)
async def list_categories(
    lang: str | None = None,
    cursor: int = 0,
    limit: int | None = None,
    query: QueryService = Depends(get_query_service),
    settings: Settings = Depends(get_app_settings),
) -> CategoriesResponse:
    page = query.categories(_resolve_lang(lang, settings), cursor=cursor, limit=limit)
    return CategoriesResponse(
        **PageFields.fields_from(page),
        items=[CategoryCountResponse(category=c.category, count=c.count) for c in page.items],
    )


@router.get("/category", response_model=CategoryPageResponse)
async def category_items(
    category: str = "",
    lang: str | None = None,
    cursor: int = 0,
    limit: int | None = None,
    query: QueryService = Depends(get_query_service),
    settings: Settings = Depends(get_app_settings),
) -> CategoryPageResponse:
    try:
        page = query.category_items(_resolve_lang(lang, settings), category, cursor=cursor, limit=limit)
    except QueryValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return CategoryPageResponse(
        **PageFields.fields_from(page),
        category=category.strip(),
        items=[EbookItem.from_item(item) for item in page.items],
    )


@router.get("/author", response_model=AuthorPageResponse)
async def author_items(
    author: str = "",
    lang: str | None = None,
    cursor: int = 0,
    limit: int | None = None,
    query: QueryService = Depends(get_query_service),
    settings: Settings = Depends(get_app_settings),
) -> AuthorPageResponse:
    try:
        listing = query.author_items(_resolve_lang(lang, settings), author, cursor=cursor, limit=limit)
    except QueryValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return AuthorPageResponse(
        **PageFields.fields_from(listing.page),
        author=listing.author,
        items=[EbookItem.from_item(item) for item in listing.page.items],
    )


@router.get("/search", response_model=SearchPageResponse)
async def search_items(
    q: str = "",
    lang: str | None = None,
    cursor: int = 0,
    limit: int | None = None,
    query: QueryService = Depends(get_query_service),
    settings: Settings = Depends(get_app_settings),
) -> SearchPageResponse:
    try:
        page = query.search(_resolve_lang(lang, settings), q, cursor=cursor, limit=limit)
    except QueryValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return SearchPageResponse(
        **PageFields.fields_from(page),
        query=q.strip(),
        items=[EbookItem.from_item(item) for item in page.items],
    )


@router.get("/live", response_model=OverviewResponse)
async def live_overview(
    lang: str | None = None,
    pool: int | None = None,
    per_category: int | None = Query(None, alias="perCategory"),
    trending: int | None = None,
    max_categories: int | None = Query(None, alias="maxCategories"),
    live: LiveAggregator = Depends(get_live_aggregator),
    settings: Settings = Depends(get_app_settings),
) -> OverviewResponse:
    overview = await live.overview(
        _resolve_lang(lang, settings),
        pool=pool,
        per_category=per_category,
        trending_limit=trending,
        max_categories=max_categories,
    )
    return OverviewResponse.from_overview(overview)


@router.get("/catalog/status", response_model=CatalogStatusResponse)
async def catalog_status(
    lang: str | None = None,
    query: QueryService = Depends(get_query_service),
    settings: Settings = Depends(get_app_settings),
) -> CatalogStatusResponse:
    return CatalogStatusResponse.from_status(query.status(_resolve_lang(lang, settings)))


@router.post("/catalog/sync", response_model=SyncResponse)
async def trigger_sync(
    body: SyncRequest | None = None,
    lang: str | None = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_app_settings),
) -> SyncResponse:
    requested = body.lang if body is not None and body.lang else lang
    language = _resolve_lang(requested, settings)
    try:
        result = await orchestrator.sync(language)
    except SyncError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:  # noqa: BLE001
        logger.error("Catalog sync for %s failed: %s", language, exc)
        raise HTTPException(status_code=500, detail=f"Sync failed: {exc}") from exc
    return SyncResponse(lang=result.language, upserted=result.upserted, merged=result.merged, fetched=result.fetched)


@router.post("/catalog/import", response_model=ImportResponse)
async def import_items(
    body: ImportRequest,
    importer: CatalogImporter = Depends(get_importer),
    settings: Settings = Depends(get_app_settings),
) -> ImportResponse:
    language = _resolve_lang(body.lang, settings)
    try:
        result = importer.import_items(
            lang=language,
            source=body.source,
            items=body.items,
            max_items=body.max_items,
        )
    except QueryValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ImportResponse(
        lang=result.lang,
        source=result.source,
        received=result.received,
        accepted=result.accepted,
        upserted=result.upserted,
        inserted=result.inserted,
        updated=result.updated,
        rejected=result.rejected,
    )
