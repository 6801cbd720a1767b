from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from ebook_catalog.catalog.normalize import (
    normalize_author_key,
    normalize_main_title,
    normalize_search_key,
    sort_categories,
)
from ebook_catalog.enrichment.service import EnrichmentResolver
from ebook_catalog.query.models import (
    AuthorListing,
    CatalogStatus,
    CategoryEntry,
    Overview,
    Page,
    PublicItem,
    TopAuthor,
    iso_timestamp,
    next_cursor,
)
from ebook_catalog.shared.cache import TTLCache
from ebook_catalog.shared.errors import NotFoundError, QueryValidationError
from ebook_catalog.storage.repositories import CatalogItemRecord
from ebook_catalog.storage.sqlite import SQLiteStore

logger = logging.getLogger(__name__)

CURSOR_MAX = 9_999_999
CATEGORIES_LIMIT = (10, 200, 60)
ITEMS_LIMIT = (10, 100, 40)
PER_CATEGORY = (6, 24, 12)
TRENDING_LIMIT = (6, 24, 12)
MAX_CATEGORIES = (6, 32, 14)
TOP_AUTHORS = 12
MIN_SEARCH_LENGTH = 2


def clamp_int(value: object, minimum: int, maximum: int, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = int(float(str(value).strip()))
    except (ValueError, OverflowError):
        return default
    return max(minimum, min(maximum, parsed))


def clamp_cursor(value: object) -> int:
    return clamp_int(value, 0, CURSOR_MAX, 0)


def is_gutenberg_record(record: CatalogItemRecord) -> bool:
    return record.source == "gutendex" or (record.source_id or "").startswith("gutenberg:")


class QueryService:
    """Read-only access to the persisted catalog.

    Never performs upstream I/O on the request path. Canonical titles for
    Gutenberg rows come from the enrichment cache only; misses are queued for
    a bounded background lookup so later requests can use them.
    """

    def __init__(
        self,
        *,
        store: SQLiteStore,
        enrichment: EnrichmentResolver | None = None,
        response_cache: TTLCache[Overview] | None = None,
        sync_in_flight: Callable[[str], bool] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.enrichment = enrichment
        self.response_cache: TTLCache[Overview] = response_cache or TTLCache(ttl_seconds=600.0)
        self.sync_in_flight = sync_in_flight
        self.clock = clock

    def _now_iso(self) -> str | None:
        return iso_timestamp(self.clock())

    def _to_public(self, records: list[CatalogItemRecord], lang: str) -> list[PublicItem]:
        out: list[PublicItem] = []
        warmup: list[tuple[str, str]] = []
        for record in records:
            title = normalize_main_title(record.title) or record.title
            if self.enrichment is not None and is_gutenberg_record(record):
                match = self.enrichment.cached_match(lang, record.title, record.author)
                if match is None:
                    warmup.append((record.title, record.author))
                elif match.title:
                    title = match.title
            out.append(
                PublicItem(
                    id=record.id,
                    title=title,
                    author=record.author,
                    language=record.lang,
                    category=record.category,
                    cover_url=record.cover_url,
                    download_url=record.download_url,
                )
            )
        self._warm_titles(lang, warmup)
        return out

    def _warm_titles(self, lang: str, pairs: list[tuple[str, str]]) -> None:
        if self.enrichment is None or not pairs:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self.enrichment.schedule_title_warmup(lang, pairs)

    def categories(self, lang: str, *, cursor: object = 0, limit: object = None) -> Page[CategoryEntry]:
        start = clamp_cursor(cursor)
        size = clamp_int(limit, *CATEGORIES_LIMIT)
        counts = [c for c in self.store.list_category_counts(lang) if c.count > 0]
        window = counts[start : start + size]
        return Page(
            lang=lang,
            items=[CategoryEntry(category=c.category, count=c.count) for c in window],
            cursor=start,
            limit=size,
            total=len(counts),
            next_cursor=next_cursor(start, len(window), size, len(counts)),
            generated_at=self._now_iso(),
        )

    def category_items(
        self,
        lang: str,
        category: str | None,
        *,
        cursor: object = 0,
        limit: object = None,
        allow_empty: bool = False,
    ) -> Page[PublicItem]:
        wanted = (category or "").strip()
        if not wanted:
            raise QueryValidationError("Missing category")
        start = clamp_cursor(cursor)
        size = clamp_int(limit, *ITEMS_LIMIT)

        records = self.store.list_items(lang, category=wanted, offset=start, limit=size)
        if not records and not allow_empty:
            raise NotFoundError("Category not found")
        total = self.store.count_items(lang, category=wanted) if records else 0
        return Page(
            lang=lang,
            items=self._to_public(records, lang),
            cursor=start,
            limit=size,
            total=total,
            next_cursor=next_cursor(start, len(records), size, total),
            generated_at=self._now_iso(),
        )

    def author_items(
        self,
        lang: str,
        author: str | None,
        *,
        cursor: object = 0,
        limit: object = None,
    ) -> AuthorListing:
        wanted = (author or "").strip()
        if not wanted:
            raise QueryValidationError("Missing author")
        start = clamp_cursor(cursor)
        size = clamp_int(limit, *ITEMS_LIMIT)
        author_norm = normalize_author_key(wanted)

        records = self.store.list_items(lang, author_norm=author_norm, offset=start, limit=size)
        if not records:
            raise NotFoundError("Author not found")
        counted = self.store.get_author_count(lang, author_norm)
        total = self.store.count_items(lang, author_norm=author_norm)
        page = Page(
            lang=lang,
            items=self._to_public(records, lang),
            cursor=start,
            limit=size,
            total=total,
            next_cursor=next_cursor(start, len(records), size, total),
            generated_at=self._now_iso(),
        )
        return AuthorListing(author=counted.author if counted else wanted, page=page)

    def search(self, lang: str, query: str | None, *, cursor: object = 0, limit: object = None) -> Page[PublicItem]:
        raw = (query or "").strip()
        if len(raw) < MIN_SEARCH_LENGTH:
            raise QueryValidationError("Missing query")
        start = clamp_cursor(cursor)
        size = clamp_int(limit, *ITEMS_LIMIT)

        want = normalize_search_key(raw)
        if not want:
            return Page(lang=lang, items=[], cursor=start, limit=size, total=0, next_cursor=None)

        records = self.store.list_items(lang, search=want, offset=start, limit=size)
        total = self.store.count_items(lang, search=want)
        return Page(
            lang=lang,
            items=self._to_public(records, lang),
            cursor=start,
            limit=size,
            total=total,
            next_cursor=next_cursor(start, len(records), size, total),
            generated_at=self._now_iso(),
        )

    async def overview(
        self,
        lang: str,
        *,
        per_category: object = None,
        trending_limit: object = None,
        max_categories: object = None,
    ) -> Overview:
        per = clamp_int(per_category, *PER_CATEGORY)
        trending = clamp_int(trending_limit, *TRENDING_LIMIT)
        max_cats = clamp_int(max_categories, *MAX_CATEGORIES)

        async def _build() -> Overview:
            return self._build_overview(lang, per_category=per, trending_limit=trending, max_categories=max_cats)

        return await self.response_cache.get_or_compute(f"catalog:{lang}:{per}:{trending}:{max_cats}", _build)

    def _build_overview(self, lang: str, *, per_category: int, trending_limit: int, max_categories: int) -> Overview:
        state = self.store.get_sync_state(lang)
        generated_at = iso_timestamp(state.last_completed_at) if state and state.last_completed_at else None

        by_count = [c.category for c in self.store.list_category_counts(lang) if c.count > 0][:max_categories]
        categories = sort_categories(by_count)
        top_authors = [TopAuthor(name=a.author, count=a.count) for a in self.store.top_authors(lang, TOP_AUTHORS)]
        trending = self._to_public(self.store.list_items(lang, limit=trending_limit), lang)

        shelves: dict[str, list[PublicItem]] = {}
        for category in categories:
            items = self._to_public(self.store.list_items(lang, category=category, limit=per_category), lang)
            if items:
                shelves[category] = items

        return Overview(
            lang=lang,
            generated_at=generated_at or self._now_iso(),
            categories=categories,
            top_authors=top_authors,
            trending=trending,
            by_category=shelves,
        )

    def invalidate_language(self, lang: str) -> int:
        prefix = f"catalog:{lang}:"
        dropped = self.response_cache.invalidate_where(lambda key: str(key).startswith(prefix))
        if dropped:
            logger.debug("Dropped %d cached overview responses for %s", dropped, lang)
        return dropped

    def status(self, lang: str) -> CatalogStatus:
        state = self.store.get_sync_state(lang)
        in_flight = bool(self.sync_in_flight and self.sync_in_flight(lang))
        return CatalogStatus(
            lang=lang,
            status=state.status if state else "idle",
            last_started_at=iso_timestamp(state.last_started_at) if state else None,
            last_completed_at=iso_timestamp(state.last_completed_at) if state else None,
            last_error=state.last_error if state else None,
            last_items_upserted=state.last_items_upserted if state else 0,
            total=self.store.count_items(lang),
            in_flight=in_flight,
        )
