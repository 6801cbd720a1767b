from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ebook_catalog.enrichment.openlibrary import OpenLibraryClient, OpenLibraryMatch
from ebook_catalog.enrichment.service import EnrichmentResolver, lookup_key
from ebook_catalog.query.models import next_cursor
from ebook_catalog.query.service import QueryService, clamp_int
from ebook_catalog.shared.cache import TTLCache
from ebook_catalog.shared.errors import NotFoundError, QueryValidationError
from ebook_catalog.storage.repositories import CatalogItemRecord
from ebook_catalog.storage.sqlite import SQLiteStore


def _record(item_id: str, **overrides: object) -> CatalogItemRecord:
    fields: dict[str, object] = {
        "id": item_id,
        "lang": "en",
        "title": f"Novel {item_id}",
        "author": "Jane Austen",
        "category": "Romance",
        "title_norm": f"novel {item_id}",
        "author_norm": "jane austen",
        "source": "standardebooks",
        "download_url": f"https://example.org/{item_id}.epub",
        "created_at": 1,
        "updated_at": 1,
        "last_seen_at": 1,
    }
    fields.update(overrides)
    return CatalogItemRecord(**fields)  # type: ignore[arg-type]


@pytest.fixture
def store(tmp_path: Path):  # type: ignore[no-untyped-def]
    db = SQLiteStore(tmp_path / "catalog.sqlite3")
    db.create_schema()
    rows = [_record(f"r{i:02d}", source_popularity=100 - i) for i in range(25)]
    rows.append(
        _record(
            "dracula",
            title="Dracula",
            title_norm="dracula",
            author="Bram Stoker",
            author_norm="bram stoker",
            category="Horror",
            source_popularity=500,
        )
    )
    db.upsert_catalog_items(rows)
    db.rebuild_counts("en", now_unix=10)
    yield db
    db.close()


def test_clamp_int_and_next_cursor() -> None:
    assert clamp_int(None, 10, 100, 40) == 40
    assert clamp_int(True, 10, 100, 40) == 40
    assert clamp_int("15.7", 10, 100, 40) == 15
    assert clamp_int("abc", 10, 100, 40) == 40
    assert clamp_int("1e999", 10, 100, 40) == 40
    assert clamp_int(500, 10, 100, 40) == 100
    assert clamp_int(-3, 10, 100, 40) == 10

    assert next_cursor(0, 10, 10, 25) == 10
    assert next_cursor(20, 5, 10, 25) is None
    assert next_cursor(10, 10, 10, 20) is None


def test_categories_page(store: SQLiteStore) -> None:
    page = QueryService(store=store).categories("en", limit=1)

    assert page.limit == 10
    assert page.total == 2
    assert [(c.category, c.count) for c in page.items] == [("Romance", 25), ("Horror", 1)]
    assert page.next_cursor is None


def test_category_items_paginates(store: SQLiteStore) -> None:
    service = QueryService(store=store)

    first = service.category_items("en", "Romance", limit=10)
    last = service.category_items("en", "Romance", cursor=20, limit=10)

    assert first.total == 25
    assert [item.id for item in first.items][:2] == ["r00", "r01"]
    assert first.next_cursor == 10
    assert [item.id for item in last.items] == ["r20", "r21", "r22", "r23", "r24"]
    assert last.next_cursor is None


def test_category_items_validation_and_not_found(store: SQLiteStore) -> None:
    service = QueryService(store=store)

    with pytest.raises(QueryValidationError):
        service.category_items("en", "  ")
    with pytest.raises(NotFoundError):
        service.category_items("en", "Western")

    empty = service.category_items("en", "Western", allow_empty=True)
    assert empty.items == []
    assert empty.total == 0
    assert empty.next_cursor is None


def test_author_items_uses_display_name_from_counts(store: SQLiteStore) -> None:
    service = QueryService(store=store)

    listing = service.author_items("en", "  BRAM stoker ")

    assert listing.author == "Bram Stoker"
    assert [item.title for item in listing.page.items] == ["Dracula"]
    with pytest.raises(NotFoundError):
        service.author_items("en", "Nobody Atall")
    with pytest.raises(QueryValidationError):
        service.author_items("en", None)


def test_search(store: SQLiteStore) -> None:
    service = QueryService(store=store)

    with pytest.raises(QueryValidationError):
        service.search("en", "d")
    assert service.search("en", "!!").items == []

    page = service.search("en", "Stoker!")
    assert [item.id for item in page.items] == ["dracula"]
    assert page.total == 1


@pytest.mark.asyncio
async def test_overview_is_cached_until_language_invalidated(store: SQLiteStore) -> None:
    store.mark_sync_completed("en", 26, now_unix=86400)
    service = QueryService(store=store)

    first = await service.overview("en", per_category=6, trending_limit=6)
    again = await service.overview("en", per_category="6", trending_limit=6)

    assert again is first
    assert first.generated_at == "1970-01-02T00:00:00Z"
    assert first.categories == ["Horror", "Romance"]
    assert [a.name for a in first.top_authors] == ["Jane Austen", "Bram Stoker"]
    assert first.trending[0].id == "dracula"
    assert len(first.by_category["Romance"]) == 6

    assert service.invalidate_language("en") == 1
    assert service.invalidate_language("fr") == 0
    rebuilt = await service.overview("en", per_category=6, trending_limit=6)
    assert rebuilt is not first


def test_status_defaults_to_idle(store: SQLiteStore) -> None:
    service = QueryService(store=store, sync_in_flight=lambda lang: lang == "en", clock=lambda: 0.0)

    status = service.status("en")
    assert status.status == "idle"
    assert status.last_completed_at is None
    assert status.total == 26
    assert status.in_flight is True

    store.mark_sync_failed("fr", "boom", now_unix=0)
    failed = service.status("fr")
    assert failed.status == "error"
    assert failed.last_error == "boom"
    assert failed.in_flight is False


def test_gutenberg_titles_come_from_enrichment_cache(store: SQLiteStore) -> None:
    store.upsert_catalog_items(
        [
            _record(
                "pg84",
                title="Frankenstein; Or, The Modern Prometheus",
                title_norm="frankenstein; or, the modern prometheus",
                author="Mary Shelley",
                author_norm="mary shelley",
                category="Horror",
                source="gutendex",
            )
        ]
    )
    resolver = EnrichmentResolver(openlibrary=OpenLibraryClient(client=MagicMock()), cache=TTLCache(ttl_seconds=60.0))
    resolver.cache.set(
        lookup_key("en", "Frankenstein; Or, The Modern Prometheus", "Mary Shelley"),
        OpenLibraryMatch(title="Frankenstein"),
    )
    service = QueryService(store=store, enrichment=resolver)

    page = service.author_items("en", "Mary Shelley")

    assert [item.title for item in page.page.items] == ["Frankenstein"]


@pytest.mark.asyncio
async def test_cache_misses_schedule_background_title_lookups(store: SQLiteStore) -> None:
    store.upsert_catalog_items(
        [_record("pg1", title="Walden", title_norm="walden", source="gutendex", category="Nonfiction")]
    )
    enrichment = MagicMock()
    enrichment.cached_match.return_value = None
    service = QueryService(store=store, enrichment=enrichment)

    page = service.search("en", "walden")

    assert [item.title for item in page.items] == ["Walden"]
    enrichment.schedule_title_warmup.assert_called_once_with("en", [("Walden", "Jane Austen")])
