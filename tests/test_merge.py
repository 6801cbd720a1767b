from __future__ import annotations

import itertools
from pathlib import Path

import pytest

from ebook_catalog.catalog.merge import DEFAULT_SOURCE_RANKS, load_source_ranks, merge_candidates, pick_better
from ebook_catalog.catalog.models import NormalizedCandidate
from ebook_catalog.catalog.normalize import build_candidate


def _candidate(
    source: str,
    *,
    cover_url: str | None = None,
    popularity: int | None = None,
    download_url: str | None = "https://example.org/book.epub",
    source_id: str | None = None,
) -> NormalizedCandidate:
    return build_candidate(
        language="en",
        title="Frankenstein",
        author="Mary Shelley",
        category="Horror",
        source=source,
        download_url=download_url,
        cover_url=cover_url,
        source_id=source_id,
        source_popularity=popularity,
    )


def test_cover_beats_popularity_and_rank() -> None:
    popular = _candidate("gutendex", popularity=50_000)
    with_cover = _candidate("manybooks", cover_url="https://covers.example/f.jpg", popularity=3)

    assert pick_better(popular, with_cover) is with_cover
    assert pick_better(with_cover, popular) is with_cover


def test_popularity_beats_rank_when_covers_equal() -> None:
    standard = _candidate("standardebooks", cover_url="https://se.example/c.jpg")
    gutendex = _candidate("gutendex", cover_url="https://gutenberg.example/c.jpg", popularity=10)

    assert pick_better(standard, gutendex) is gutendex


def test_rank_breaks_remaining_ties() -> None:
    standard = _candidate("standardebooks")
    wikisource = _candidate("wikisource")

    assert pick_better(wikisource, standard) is standard
    assert pick_better(standard, wikisource) is standard


def test_merge_is_order_independent() -> None:
    candidates = [
        _candidate("gutendex", popularity=5, source_id="84"),
        _candidate("gutendex", popularity=5, source_id="42"),
        _candidate("wikisource"),
        _candidate("manybooks", popularity=5),
        _candidate("standardebooks", popularity=5),
    ]

    winners = set()
    for permutation in itertools.permutations(candidates):
        merged = merge_candidates(permutation)
        assert len(merged) == 1
        winners.add(next(iter(merged.values())))

    assert len(winners) == 1
    (winner,) = winners
    assert winner.source == "standardebooks"


def test_merge_keeps_distinct_identities_apart() -> None:
    other = build_candidate(
        language="en",
        title="Dracula",
        author="Bram Stoker",
        category="Horror",
        source="gutendex",
        download_url="https://example.org/dracula.epub",
        cover_url=None,
        source_id="345",
        source_popularity=1,
    )
    merged = merge_candidates([_candidate("gutendex"), other, _candidate("wikisource")])

    assert len(merged) == 2
    assert merged[other.catalog_id] is other


def test_load_source_ranks_defaults_without_file(tmp_path: Path) -> None:
    assert load_source_ranks(None) == DEFAULT_SOURCE_RANKS
    assert load_source_ranks(tmp_path / "missing.yaml") == DEFAULT_SOURCE_RANKS


def test_load_source_ranks_mapping_overrides(tmp_path: Path) -> None:
    path = tmp_path / "ranks.yaml"
    path.write_text("manybooks: -1\nGutendex: 7\n", encoding="utf-8")

    ranks = load_source_ranks(path)

    assert ranks["manybooks"] == -1
    assert ranks["gutendex"] == 7
    assert ranks["standardebooks"] == 0


def test_load_source_ranks_list_form(tmp_path: Path) -> None:
    path = tmp_path / "ranks.yaml"
    path.write_text("sources:\n  - wikisource\n  - gutendex\n", encoding="utf-8")

    assert load_source_ranks(path) == {"wikisource": 0, "gutendex": 1}


def test_load_source_ranks_rejects_bad_values(tmp_path: Path) -> None:
    path = tmp_path / "ranks.yaml"
    path.write_text("gutendex: first\n", encoding="utf-8")

    with pytest.raises(ValueError, match="gutendex"):
        load_source_ranks(path)
