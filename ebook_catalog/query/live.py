"""Request-time aggregation straight from the upstream sources.

This is the fallback path used before a language has a persisted catalog:
the sources are fetched live, interleaved so no single library dominates,
and the visible selection gets a bounded cover/author enrichment pass. The
aggregated pool is cached per language and pool size.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import Counter, defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from ebook_catalog.catalog.models import NormalizedCandidate, RawCandidate
from ebook_catalog.catalog.normalize import DEFAULT_CATEGORY, category_rank, normalize_candidate, sort_categories
from ebook_catalog.enrichment.service import EnrichmentResolver
from ebook_catalog.query.models import Overview, PublicItem, TopAuthor, iso_timestamp
from ebook_catalog.query.service import MAX_CATEGORIES, PER_CATEGORY, TRENDING_LIMIT, clamp_int
from ebook_catalog.shared.cache import TTLCache
from ebook_catalog.shared.errors import SourceUnavailableError
from ebook_catalog.sources.registry import SourceRegistry

logger = logging.getLogger(__name__)

INTERLEAVE_ORDER: tuple[str, ...] = ("standardebooks", "gutendex", "manybooks", "wikisource", "wolnelektury")
POOL_SIZE = (120, 1200, 600)
LIVE_TOP_AUTHORS = 10
VISIBLE_PER_CATEGORY = 4


@dataclass(slots=True, frozen=True)
class LivePool:
    generated_at: float
    items: list[NormalizedCandidate]


def interleave_key(candidate: NormalizedCandidate) -> str:
    return f"{candidate.language}::{candidate.title.lower()}::{candidate.author.lower()}"


def merge_interleaved(lang: str, lists: Sequence[Sequence[NormalizedCandidate]], pool: int) -> list[NormalizedCandidate]:
    """Round-robin over ``lists`` taking one new record from each per turn."""
    out: list[NormalizedCandidate] = []
    seen: set[str] = set()
    positions = [0] * len(lists)

    while len(out) < pool:
        progressed = False
        for index, items in enumerate(lists):
            if len(out) >= pool:
                break
            while positions[index] < len(items):
                candidate = items[positions[index]]
                positions[index] += 1
                if candidate.language != lang:
                    continue
                key = interleave_key(candidate)
                if key in seen:
                    continue
                seen.add(key)
                out.append(candidate)
                progressed = True
                break
        if not progressed:
            break
    return out


def group_by_category(items: Sequence[NormalizedCandidate]) -> dict[str, list[NormalizedCandidate]]:
    grouped: dict[str, list[NormalizedCandidate]] = defaultdict(list)
    for item in items:
        grouped[(item.category or DEFAULT_CATEGORY).strip() or DEFAULT_CATEGORY].append(item)
    return dict(grouped)


def pick_top_categories(
    by_category: dict[str, list[NormalizedCandidate]], max_categories: int, per_category: int
) -> list[str]:
    """Prefer categories that can fill a shelf, then order them for display."""
    min_count = max(3, min(8, per_category // 2))
    entries = [(category, len(items)) for category, items in by_category.items() if items]

    def _sort_key(entry: tuple[str, int]) -> tuple[int, int, str]:
        return (-entry[1], category_rank(entry[0]), entry[0])

    primary = sorted((e for e in entries if e[1] >= min_count), key=_sort_key)
    fallback = sorted((e for e in entries if e[1] < min_count), key=_sort_key)
    return sort_categories(category for category, _ in (primary + fallback)[:max_categories])


def top_authors(items: Sequence[NormalizedCandidate], limit: int = LIVE_TOP_AUTHORS) -> list[TopAuthor]:
    counts = Counter(item.author.strip() for item in items if item.has_resolved_author)
    ranked = sorted(counts.items(), key=lambda pair: (-pair[1], pair[0]))
    return [TopAuthor(name=name, count=count) for name, count in ranked[:limit]]


def to_public(candidate: NormalizedCandidate) -> PublicItem:
    return PublicItem(
        id=candidate.catalog_id,
        title=candidate.title,
        author=candidate.author,
        language=candidate.language,
        category=candidate.category,
        cover_url=candidate.cover_url,
        download_url=candidate.download_url,
    )


def live_source_limits(pool: int, gutendex_count: int) -> dict[str, int]:
    if gutendex_count < max(12, math.floor(pool * 0.35)):
        wikisource = min(pool, max(120, math.floor(pool * 0.7)))
    else:
        wikisource = min(200, max(80, math.floor(pool * 0.3)))
    return {
        "wikisource": wikisource,
        "manybooks": min(220, max(60, math.floor(pool * 0.25))),
        "wolnelektury": min(pool, 400),
    }


class LiveAggregator:
    def __init__(
        self,
        *,
        sources: SourceRegistry,
        enrichment: EnrichmentResolver | None = None,
        cache: TTLCache[LivePool] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.sources = sources
        self.enrichment = enrichment
        self.cache: TTLCache[LivePool] = cache or TTLCache(ttl_seconds=600.0)
        self.clock = clock

    async def _fetch_normalized(self, name: str, lang: str, limit: int | None) -> list[NormalizedCandidate]:
        source = self.sources.get(name)
        if source is None or not source.applies_to(lang):
            return []
        try:
            raw: list[RawCandidate] = await source.fetch(lang, limit)
        except SourceUnavailableError as exc:
            logger.warning("Live fetch from %s unavailable for %s: %s", name, lang, exc.reason)
            return []
        except Exception as exc:  # noqa: BLE001
            logger.warning("Live fetch from %s failed unexpectedly for %s: %r", name, lang, exc)
            return []
        return [c for c in (normalize_candidate(r) for r in raw) if c is not None]

    async def _enrich_visible(
        self,
        lang: str,
        merged: list[NormalizedCandidate],
        *,
        max_categories: int,
        per_category: int,
        trending_limit: int,
    ) -> list[NormalizedCandidate]:
        if self.enrichment is None:
            return merged
        by_category = group_by_category(merged)
        selected: dict[str, NormalizedCandidate] = {}
        for item in merged[:trending_limit]:
            selected.setdefault(item.catalog_id, item)
        for category in pick_top_categories(by_category, max_categories, per_category):
            for item in by_category.get(category, [])[: min(VISIBLE_PER_CATEGORY, per_category)]:
                selected.setdefault(item.catalog_id, item)

        visible = list(selected.values())
        enriched = await self.enrichment.enrich(lang, visible)
        replaced = {original.catalog_id: updated for original, updated in zip(visible, enriched)}
        return [replaced.get(item.catalog_id, item) for item in merged]

    async def _build_pool(
        self, lang: str, pool: int, *, max_categories: int, per_category: int, trending_limit: int
    ) -> LivePool:
        gutendex = await self._fetch_normalized("gutendex", lang, pool)
        limits = live_source_limits(pool, len(gutendex))
        standard, manybooks, wikisource, wolne = await asyncio.gather(
            self._fetch_normalized("standardebooks", lang, None),
            self._fetch_normalized("manybooks", lang, limits["manybooks"]),
            self._fetch_normalized("wikisource", lang, limits["wikisource"]),
            self._fetch_normalized("wolnelektury", lang, limits["wolnelektury"]),
        )
        by_source = {
            "standardebooks": standard,
            "gutendex": gutendex,
            "manybooks": manybooks,
            "wikisource": wikisource,
            "wolnelektury": wolne,
        }
        merged = merge_interleaved(lang, [by_source[name] for name in INTERLEAVE_ORDER], pool)
        merged = await self._enrich_visible(
            lang,
            merged,
            max_categories=max_categories,
            per_category=per_category,
            trending_limit=trending_limit,
        )
        logger.info("Live pool for %s: %d items", lang, len(merged))
        return LivePool(generated_at=self.clock(), items=merged)

    async def overview(
        self,
        lang: str,
        *,
        pool: object = None,
        per_category: object = None,
        trending_limit: object = None,
        max_categories: object = None,
    ) -> Overview:
        size = clamp_int(pool, *POOL_SIZE)
        per = clamp_int(per_category, *PER_CATEGORY)
        trending = clamp_int(trending_limit, *TRENDING_LIMIT)
        max_cats = clamp_int(max_categories, *MAX_CATEGORIES)

        async def _build() -> LivePool:
            return await self._build_pool(
                lang, size, max_categories=max_cats, per_category=per, trending_limit=trending
            )

        live = await self.cache.get_or_compute(f"{lang}:{size}", _build)
        resolved = [item for item in live.items if item.has_resolved_author]
        by_category = group_by_category(resolved)
        categories = sort_categories(by_category)
        return Overview(
            lang=lang,
            generated_at=iso_timestamp(live.generated_at),
            categories=categories,
            top_authors=top_authors(resolved),
            trending=[to_public(item) for item in resolved[:trending]],
            by_category={c: [to_public(item) for item in by_category[c][:per]] for c in categories},
        )
