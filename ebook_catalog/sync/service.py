from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

from ebook_catalog.catalog.merge import DEFAULT_SOURCE_RANKS, merge_candidates
from ebook_catalog.catalog.models import NormalizedCandidate, RawCandidate
from ebook_catalog.catalog.normalize import normalize_candidate
from ebook_catalog.enrichment.service import EnrichmentResolver
from ebook_catalog.shared.cache import SingleFlight
from ebook_catalog.shared.errors import SourceUnavailableError, SyncError
from ebook_catalog.shared.settings import normalize_lang
from ebook_catalog.sources.base import SourceFetcher
from ebook_catalog.sources.registry import SourceRegistry
from ebook_catalog.storage.repositories import record_from_candidate
from ebook_catalog.storage.sqlite import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SyncResult:
    language: str
    upserted: int
    merged: int = 0
    fetched: dict[str, int] = field(default_factory=dict)


def enrichment_priority(candidate: NormalizedCandidate) -> tuple[int, str]:
    """Most popular records are enriched first; ties fall back to the catalog id."""
    return (-(candidate.source_popularity or 0), candidate.catalog_id)


def normalize_all(batches: Iterable[list[RawCandidate]], language: str) -> list[NormalizedCandidate]:
    out: list[NormalizedCandidate] = []
    for batch in batches:
        for raw in batch:
            candidate = normalize_candidate(raw)
            if candidate is not None and candidate.language == language:
                out.append(candidate)
    return out


def publishable(candidates: Iterable[NormalizedCandidate]) -> list[NormalizedCandidate]:
    return sorted(
        (c for c in candidates if c.has_resolved_author and c.download_url),
        key=lambda c: c.catalog_id,
    )


class SyncOrchestrator:
    """Fetch, normalize, merge, enrich and persist the catalog for one language.

    Concurrent ``sync`` calls for the same language share one run. Source
    failures count as zero candidates. A failure after the run started is
    recorded in the sync state and re-raised.
    """

    def __init__(
        self,
        *,
        store: SQLiteStore,
        sources: SourceRegistry,
        enrichment: EnrichmentResolver | None = None,
        source_ranks: Mapping[str, int] = DEFAULT_SOURCE_RANKS,
        enrich_on_sync: bool = True,
        batch_size: int = 400,
        on_synced: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.sources = sources
        self.enrichment = enrichment
        self.source_ranks = dict(source_ranks)
        self.enrich_on_sync = enrich_on_sync
        self.batch_size = batch_size
        self.on_synced = on_synced
        self.clock = clock
        self._flight: SingleFlight[str, SyncResult] = SingleFlight()

    def in_flight(self, language: str) -> bool:
        return self._flight.in_flight(language)

    async def sync(self, language: str) -> SyncResult:
        lang = normalize_lang(language)
        if lang is None:
            raise SyncError(f"Invalid language: {language!r}")
        return await self._flight.run(lang, lambda: self._run(lang))

    async def _safe_fetch(self, source: SourceFetcher, language: str) -> list[RawCandidate]:
        try:
            return await source.fetch(language)
        except SourceUnavailableError as exc:
            logger.warning("Source %s failed for %s: %s", source.name, language, exc.reason)
            return []
        except Exception as exc:  # noqa: BLE001
            logger.warning("Source %s failed unexpectedly for %s: %r", source.name, language, exc)
            return []

    async def _collect(self, language: str) -> tuple[dict[str, NormalizedCandidate], dict[str, int]]:
        applicable = self.sources.applicable(language)
        batches = await asyncio.gather(*(self._safe_fetch(source, language) for source in applicable))
        fetched = {source.name: len(batch) for source, batch in zip(applicable, batches)}

        merged = merge_candidates(normalize_all(batches, language), self.source_ranks)
        if self.enrichment is not None and self.enrich_on_sync and merged:
            ordered = sorted(merged.values(), key=enrichment_priority)
            enriched = await self.enrichment.enrich(language, ordered)
            merged = merge_candidates(enriched, self.source_ranks)
        return merged, fetched

    async def _run(self, language: str) -> SyncResult:
        started = time.monotonic()
        logger.info("Catalog sync started for %s", language)
        self.store.mark_sync_started(language, now_unix=int(self.clock()))
        try:
            merged, fetched = await self._collect(language)
            now = int(self.clock())
            rows = [record_from_candidate(c, now_unix=now) for c in publishable(merged.values())]
            upserted = self.store.upsert_catalog_items(rows, batch_size=self.batch_size)

            try:
                self.store.rebuild_counts(language, now_unix=now)
            except sqlite3.Error as exc:
                logger.warning("Count rebuild failed for %s (non-fatal): %s", language, exc)

            self.store.mark_sync_completed(language, upserted, now_unix=int(self.clock()))
        except asyncio.CancelledError:
            self.store.mark_sync_failed(language, "cancelled", now_unix=int(self.clock()))
            raise
        except Exception as exc:
            self.store.mark_sync_failed(language, str(exc) or exc.__class__.__name__, now_unix=int(self.clock()))
            logger.error("Catalog sync failed for %s: %s", language, exc)
            raise

        if self.on_synced is not None:
            self.on_synced(language)
        logger.info(
            "Catalog sync finished for %s: %d upserted from %d merged (%s) in %.1fs",
            language,
            upserted,
            len(merged),
            ", ".join(f"{name}={count}" for name, count in fetched.items()) or "no sources",
            time.monotonic() - started,
        )
        return SyncResult(language=language, upserted=upserted, merged=len(merged), fetched=fetched)
