from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Iterator

import httpx

from ebook_catalog.enrichment.wikidata import WikidataAuthorResolver
from ebook_catalog.shared.settings import Settings
from ebook_catalog.sources.base import SourceFetcher
from ebook_catalog.sources.circuit import SourceCircuitBreaker
from ebook_catalog.sources.gutendex import GutendexSource
from ebook_catalog.sources.manybooks import ManyBooksSource
from ebook_catalog.sources.standard_ebooks import StandardEbooksSource
from ebook_catalog.sources.wikisource import WikisourceSource
from ebook_catalog.sources.wolne_lektury import WolneLekturySource


class SourceRegistry:
    def __init__(self, sources: Iterable[SourceFetcher]) -> None:
        self._sources = {source.name: source for source in sources}

    def __iter__(self) -> Iterator[SourceFetcher]:
        return iter(self._sources.values())

    def __len__(self) -> int:
        return len(self._sources)

    def get(self, name: str) -> SourceFetcher | None:
        return self._sources.get(name)

    def applicable(self, language: str) -> list[SourceFetcher]:
        return [source for source in self._sources.values() if source.applies_to(language)]


def build_sources(
    *,
    settings: Settings,
    client: httpx.AsyncClient,
    wikidata: WikidataAuthorResolver,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> SourceRegistry:
    def breaker(name: str) -> SourceCircuitBreaker:
        return SourceCircuitBreaker(
            name,
            cooldown_seconds=settings.circuit_cooldown_seconds,
            warn_throttle_seconds=settings.circuit_warn_throttle_seconds,
            clock=clock,
        )

    common = {
        "client": client,
        "user_agent": settings.user_agent,
        "timeout_seconds": settings.http_timeout_seconds,
        "max_retries": settings.max_retries,
        "backoff_start_seconds": settings.backoff_start_seconds,
        "backoff_cap_seconds": settings.backoff_cap_seconds,
        "jitter_seconds": settings.backoff_jitter_seconds,
        "sleep": sleep,
    }
    return SourceRegistry(
        [
            StandardEbooksSource(breaker=breaker("standardebooks"), limit=400, **common),
            WolneLekturySource(breaker=breaker("wolnelektury"), limit=settings.wolne_lektury_limit, **common),
            GutendexSource(
                breaker=breaker("gutendex"),
                limit=settings.gutendex_limit,
                max_pages=settings.gutendex_max_pages,
                page_delay_seconds=settings.gutendex_page_delay_seconds,
                **common,
            ),
            WikisourceSource(
                breaker=breaker("wikisource"),
                limit=settings.wikisource_limit,
                wikidata=wikidata,
                allpages_langs=settings.wikisource_allpages_langs,
                allpages_limit=settings.wikisource_allpages_limit,
                **common,
            ),
            ManyBooksSource(
                breaker=breaker("manybooks"),
                limit=settings.manybooks_limit,
                browser_user_agent=settings.browser_user_agent,
                **{**common, "timeout_seconds": settings.manybooks_timeout_seconds},
            ),
        ]
    )
