from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import httpx

from ebook_catalog.catalog.models import NormalizedCandidate
from ebook_catalog.catalog.normalize import (
    has_resolved_author,
    is_generic_gutenberg_cover,
    normalize_for_lookup,
    normalize_main_title,
    rekey_candidate,
)
from ebook_catalog.enrichment.openlibrary import NO_MATCH, OpenLibraryClient, OpenLibraryMatch
from ebook_catalog.shared.cache import TTLCache
from ebook_catalog.shared.concurrency import map_with_concurrency
from ebook_catalog.shared.errors import UpstreamError

logger = logging.getLogger(__name__)

NEVER_ENRICHED_SOURCES = frozenset({"standardebooks"})
TITLE_FROM_LOOKUP_SOURCES = frozenset({"gutendex"})
MAX_TITLE_WARMUPS = 24


def lookup_key(language: str, title: str, author: str | None) -> str:
    return "::".join(
        (
            language,
            normalize_for_lookup(normalize_main_title(title)),
            normalize_for_lookup(author if has_resolved_author(author) else ""),
        )
    )


def needs_cover(candidate: NormalizedCandidate) -> bool:
    if candidate.source == "wikisource":
        return True
    return not candidate.cover_url or is_generic_gutenberg_cover(candidate.cover_url)


def needs_enrichment(candidate: NormalizedCandidate) -> bool:
    if candidate.source in NEVER_ENRICHED_SOURCES:
        return False
    return (
        needs_cover(candidate)
        or not candidate.has_resolved_author
        or candidate.source in TITLE_FROM_LOOKUP_SOURCES
    )


def apply_match(candidate: NormalizedCandidate, match: OpenLibraryMatch) -> NormalizedCandidate:
    """Fold a lookup result into a candidate, recomputing its catalog id when title/author change."""
    if not match.found:
        return candidate
    cover_url = match.cover_url if match.cover_url and needs_cover(candidate) else None
    author = match.author if match.author and not candidate.has_resolved_author else None
    title = match.title if match.title and candidate.source in TITLE_FROM_LOOKUP_SOURCES else None
    if cover_url is None and author is None and title is None:
        return candidate
    return rekey_candidate(candidate, title=title, author=author, cover_url=cover_url)


class EnrichmentResolver:
    """Best-effort metadata lookups backed by OpenLibrary.

    Results are memoized per ``(language, title, author)``: matches for the
    positive TTL, misses and failures for the shorter negative TTL. A lookup
    that fails never raises to the caller.
    """

    def __init__(
        self,
        *,
        openlibrary: OpenLibraryClient,
        cache: TTLCache[OpenLibraryMatch],
        positive_ttl_seconds: float = 30 * 24 * 3600.0,
        negative_ttl_seconds: float = 6 * 3600.0,
        max_items: int = 80,
        concurrency: int = 6,
    ) -> None:
        self.openlibrary = openlibrary
        self.cache = cache
        self.positive_ttl_seconds = positive_ttl_seconds
        self.negative_ttl_seconds = negative_ttl_seconds
        self.max_items = max_items
        self.concurrency = concurrency
        self._background: set[asyncio.Task[None]] = set()

    def _ttl(self, match: OpenLibraryMatch) -> float:
        return self.positive_ttl_seconds if match.found else self.negative_ttl_seconds

    async def lookup(self, language: str, title: str, author: str | None = None) -> OpenLibraryMatch:
        main_title = normalize_main_title(title)
        if not main_title:
            return NO_MATCH
        known_author = author if has_resolved_author(author) else None

        async def _compute() -> OpenLibraryMatch:
            try:
                return await self.openlibrary.search(main_title, known_author)
            except (UpstreamError, httpx.HTTPError, ValueError) as exc:
                logger.warning("OpenLibrary lookup failed for %r: %s", main_title, exc)
                return NO_MATCH

        return await self.cache.get_or_compute(lookup_key(language, main_title, known_author), _compute, self._ttl)

    def cached_match(self, language: str, title: str, author: str | None = None) -> OpenLibraryMatch | None:
        return self.cache.get(lookup_key(language, title, author))

    def select(self, items: Sequence[NormalizedCandidate]) -> list[NormalizedCandidate]:
        return [item for item in items if needs_enrichment(item)][: max(0, self.max_items)]

    async def enrich(self, language: str, items: Sequence[NormalizedCandidate]) -> list[NormalizedCandidate]:
        """Return ``items`` with the first ``max_items`` weak records enriched.

        Order is preserved. Enriched records may carry a new catalog id, so
        callers are expected to merge the result again.
        """
        selected = self.select(items)
        if not selected:
            return list(items)

        async def _one(item: NormalizedCandidate) -> NormalizedCandidate:
            match = await self.lookup(language, item.title, item.author)
            return apply_match(item, match)

        enriched = await map_with_concurrency(selected, self.concurrency, _one)
        replaced = {id(original): updated for original, updated in zip(selected, enriched)}
        changed = sum(1 for original, updated in zip(selected, enriched) if original is not updated)
        logger.info("Enriched %d/%d selected items for %s", changed, len(selected), language)
        return [replaced.get(id(item), item) for item in items]

    def schedule_title_warmup(self, language: str, pairs: Sequence[tuple[str, str]]) -> asyncio.Task[None] | None:
        """Start a bounded background lookup for titles not in the cache yet."""
        pending = [
            (title, author)
            for title, author in pairs
            if self.cached_match(language, title, author) is None
            and not self.cache.in_flight(lookup_key(language, title, author))
        ][:MAX_TITLE_WARMUPS]
        if not pending:
            return None

        async def _warm() -> None:
            await map_with_concurrency(pending, self.concurrency, lambda pair: self.lookup(language, *pair))

        task = asyncio.ensure_future(_warm())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
