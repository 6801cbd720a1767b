from __future__ import annotations

from dataclasses import dataclass

import httpx

from ebook_catalog.catalog.merge import load_source_ranks
from ebook_catalog.enrichment.openlibrary import OpenLibraryClient, OpenLibraryMatch
from ebook_catalog.enrichment.service import EnrichmentResolver
from ebook_catalog.enrichment.wikidata import WikidataAuthorResolver
from ebook_catalog.query.live import LiveAggregator, LivePool
from ebook_catalog.query.models import Overview
from ebook_catalog.query.service import QueryService
from ebook_catalog.shared.cache import TTLCache
from ebook_catalog.shared.settings import Settings, get_settings
from ebook_catalog.sources.registry import SourceRegistry, build_sources
from ebook_catalog.storage.sqlite import SQLiteStore
from ebook_catalog.sync.importer import CatalogImporter
from ebook_catalog.sync.scheduler import SyncScheduler
from ebook_catalog.sync.service import SyncOrchestrator


@dataclass(slots=True)
class CatalogRuntime:
    settings: Settings
    sqlite_store: SQLiteStore
    http_client: httpx.AsyncClient
    sources: SourceRegistry
    enrichment: EnrichmentResolver
    orchestrator: SyncOrchestrator
    importer: CatalogImporter
    query: QueryService
    live: LiveAggregator
    scheduler: SyncScheduler | None = None

    async def aclose(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.stop()
        await self.enrichment.aclose()
        await self.http_client.aclose()
        self.sqlite_store.close()


def build_catalog_runtime(
    *,
    settings: Settings | None = None,
    check_same_thread: bool = True,
    http_client: httpx.AsyncClient | None = None,
    with_scheduler: bool | None = None,
) -> CatalogRuntime:
    use_settings = settings or get_settings()
    use_settings.ensure_directories()

    sqlite_store = SQLiteStore(use_settings.sqlite_path, check_same_thread=check_same_thread)
    sqlite_store.create_schema()
    client = http_client or httpx.AsyncClient(
        timeout=use_settings.http_timeout_seconds,
        follow_redirects=True,
    )

    wikidata = WikidataAuthorResolver(
        client=client,
        cache=TTLCache(
            ttl_seconds=use_settings.lookup_ttl_seconds,
            max_entries=use_settings.lookup_cache_max_entries,
        ),
        timeout_seconds=use_settings.metadata_timeout_seconds,
        positive_ttl_seconds=use_settings.lookup_ttl_seconds,
        negative_ttl_seconds=use_settings.lookup_negative_ttl_seconds,
    )
    enrichment = EnrichmentResolver(
        openlibrary=OpenLibraryClient(client=client, timeout_seconds=use_settings.metadata_timeout_seconds),
        cache=TTLCache[OpenLibraryMatch](
            ttl_seconds=use_settings.lookup_ttl_seconds,
            max_entries=use_settings.lookup_cache_max_entries,
        ),
        positive_ttl_seconds=use_settings.lookup_ttl_seconds,
        negative_ttl_seconds=use_settings.lookup_negative_ttl_seconds,
        max_items=use_settings.enrich_max_items,
        concurrency=use_settings.enrich_concurrency,
    )
    sources = build_sources(settings=use_settings, client=client, wikidata=wikidata)

    query = QueryService(
        store=sqlite_store,
        enrichment=enrichment,
        response_cache=TTLCache[Overview](ttl_seconds=use_settings.response_cache_ttl_seconds),
    )
    orchestrator = SyncOrchestrator(
        store=sqlite_store,
        sources=sources,
        enrichment=enrichment,
        source_ranks=load_source_ranks(use_settings.source_ranks_path),
        enrich_on_sync=use_settings.enrich_on_sync,
        batch_size=use_settings.upsert_batch_size,
        on_synced=query.invalidate_language,
    )
    query.sync_in_flight = orchestrator.in_flight
    importer = CatalogImporter(
        store=sqlite_store,
        batch_size=use_settings.upsert_batch_size,
        counts_rebuild_throttle_seconds=use_settings.counts_rebuild_throttle_seconds,
        on_imported=query.invalidate_language,
    )
    live = LiveAggregator(
        sources=sources,
        enrichment=enrichment,
        cache=TTLCache[LivePool](ttl_seconds=use_settings.response_cache_ttl_seconds),
    )

    enable_scheduler = use_settings.auto_sync if with_scheduler is None else with_scheduler
    scheduler = (
        SyncScheduler(
            orchestrator=orchestrator,
            languages=use_settings.sync_langs,
            interval_seconds=use_settings.auto_sync_interval_seconds,
        )
        if enable_scheduler
        else None
    )

    return CatalogRuntime(
        settings=use_settings,
        sqlite_store=sqlite_store,
        http_client=client,
        sources=sources,
        enrichment=enrichment,
        orchestrator=orchestrator,
        importer=importer,
        query=query,
        live=live,
        scheduler=scheduler,
    )
