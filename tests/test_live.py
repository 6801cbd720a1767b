from __future__ import annotations

from collections.abc import Sequence
from unittest.mock import MagicMock

import pytest

from ebook_catalog.catalog.models import NormalizedCandidate, RawCandidate
from ebook_catalog.catalog.normalize import build_candidate
from ebook_catalog.enrichment.openlibrary import OpenLibraryMatch
from ebook_catalog.enrichment.service import apply_match
from ebook_catalog.query.live import (
    LiveAggregator,
    live_source_limits,
    merge_interleaved,
    pick_top_categories,
    top_authors,
)
from ebook_catalog.sources.base import SourceFetcher
from ebook_catalog.sources.registry import SourceRegistry


def _candidate(title: str, *, source: str = "gutendex", lang: str = "en", author: str = "Some Author", category: str = "Fiction") -> NormalizedCandidate:
    return build_candidate(
        language=lang,
        title=title,
        author=author,
        category=category,
        source=source,
        download_url="https://example.org/book.epub",
        cover_url=None,
        source_id=None,
        source_popularity=None,
    )


class FakeSource(SourceFetcher):
    def __init__(self, name: str, raws: Sequence[RawCandidate]) -> None:
        self.name = name  # type: ignore[misc]
        super().__init__(client=MagicMock(), limit=100)
        self.raws = list(raws)
        self.limits: list[int] = []

    async def _fetch(self, language: str, limit: int) -> list[RawCandidate]:
        self.limits.append(limit)
        return list(self.raws)


def _raw(source: str, title: str, author: str = "Jane Austen") -> RawCandidate:
    return RawCandidate(
        title=title,
        author=author,
        language="en",
        source=source,
        download_url=f"https://{source}.example/{title.replace(' ', '-')}.epub",
    )


def test_merge_interleaved_round_robins_and_dedupes() -> None:
    a1, a2, a3 = _candidate("A One"), _candidate("A Two"), _candidate("A Three")
    b1, b2 = _candidate("B One", source="manybooks"), _candidate("B Two", source="manybooks")
    duplicate = _candidate("a one", source="manybooks", author="SOME AUTHOR")
    foreign = _candidate("Le Livre", lang="fr")

    merged = merge_interleaved("en", [[a1, a2, a3], [b1, duplicate, b2], [foreign]], pool=10)

    assert [c.title for c in merged] == ["A One", "B One", "A Two", "B Two", "A Three"]
    assert len(merge_interleaved("en", [[a1, a2, a3], [b1, b2]], pool=3)) == 3


def test_pick_top_categories_prefers_full_shelves() -> None:
    by_category = {
        "Romance": [_candidate(f"R{i}") for i in range(7)],
        "Horror": [_candidate(f"H{i}") for i in range(2)],
        "Poetry": [_candidate(f"P{i}") for i in range(6)],
        "Western": [_candidate("W0")],
    }

    assert pick_top_categories(by_category, 2, 12) == ["Romance", "Poetry"]
    assert pick_top_categories(by_category, 3, 12) == ["Horror", "Romance", "Poetry"]


def test_top_authors_skip_unknown() -> None:
    items = [
        _candidate("One", author="Jules Verne"),
        _candidate("Two", author="Jules Verne"),
        _candidate("Three", author="Unknown"),
        _candidate("Four", author="Alexandre Dumas"),
    ]
    assert [(a.name, a.count) for a in top_authors(items)] == [("Jules Verne", 2), ("Alexandre Dumas", 1)]


def test_live_source_limits_lean_on_wikisource_when_gutendex_is_thin() -> None:
    assert live_source_limits(600, 0) == {"wikisource": 420, "manybooks": 150, "wolnelektury": 400}
    assert live_source_limits(600, 300)["wikisource"] == 180


@pytest.mark.asyncio
async def test_live_overview_interleaves_sources_and_caches_pool() -> None:
    gutendex = FakeSource("gutendex", [_raw("gutendex", "Emma"), _raw("gutendex", "Persuasion")])
    standard = FakeSource(
        "standardebooks",
        [_raw("standardebooks", "Emma"), _raw("standardebooks", "Walden", author="Henry David Thoreau")],
    )
    anonymous = FakeSource("manybooks", [_raw("manybooks", "Beowulf", author="")])
    live = LiveAggregator(sources=SourceRegistry([gutendex, standard, anonymous]), clock=lambda: 0.0)

    overview = await live.overview("en", pool=None, trending_limit=None)
    again = await live.overview("en")

    assert [item.title for item in overview.trending] == ["Emma", "Persuasion", "Walden"]
    assert "Beowulf" not in {item.title for item in overview.trending}
    assert overview.generated_at == "1970-01-01T00:00:00Z"
    assert [a.name for a in overview.top_authors] == ["Jane Austen", "Henry David Thoreau"]
    assert sum(len(items) for items in overview.by_category.values()) == 3
    assert set(overview.by_category) == set(overview.categories)

    assert again.trending == overview.trending
    assert gutendex.limits == [600]
    assert standard.limits == [100]


@pytest.mark.asyncio
async def test_live_overview_enriches_visible_items() -> None:
    class FillAuthors:
        async def enrich(self, language: str, items: Sequence[NormalizedCandidate]) -> list[NormalizedCandidate]:
            return [apply_match(item, OpenLibraryMatch(author="Beowulf Poet")) for item in items]

    source = FakeSource("manybooks", [_raw("manybooks", "Beowulf", author="")])
    live = LiveAggregator(sources=SourceRegistry([source]), enrichment=FillAuthors())  # type: ignore[arg-type]

    overview = await live.overview("en")

    assert [(item.title, item.author) for item in overview.trending] == [("Beowulf", "Beowulf Poet")]


@pytest.mark.asyncio
async def test_live_overview_skips_source_with_unexpected_error() -> None:
    class BrokenSource(FakeSource):
        async def _fetch(self, language: str, limit: int) -> list[RawCandidate]:
            raise AttributeError("'list' object has no attribute 'get'")

    broken = BrokenSource("gutendex", [])
    standard = FakeSource("standardebooks", [_raw("standardebooks", "Walden", author="Henry David Thoreau")])
    live = LiveAggregator(sources=SourceRegistry([broken, standard]), clock=lambda: 0.0)

    overview = await live.overview("en")

    assert [item.title for item in overview.trending] == ["Walden"]
