from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

import yaml

from ebook_catalog.catalog.models import NormalizedCandidate

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_RANKS: dict[str, int] = {
    "standardebooks": 0,
    "wolnelektury": 1,
    "gutendex": 2,
    "wikisource": 3,
    "manybooks": 4,
}
UNKNOWN_SOURCE_RANK = 999


def load_source_ranks(path: Path | None) -> dict[str, int]:
    """Read source priority overrides from YAML on top of the defaults.

    Accepts either a mapping ``source: rank`` or ``{"sources": [...]}`` where
    list position becomes the rank.
    """
    ranks = dict(DEFAULT_SOURCE_RANKS)
    if path is None or not path.exists():
        return ranks

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return ranks
    if isinstance(raw, dict) and "sources" in raw:
        raw = raw["sources"]
    if isinstance(raw, list):
        return {str(name).strip().lower(): index for index, name in enumerate(raw) if str(name).strip()}
    if not isinstance(raw, dict):
        raise ValueError(f"Source rank file must contain a mapping or a list: {path}")
    for name, rank in raw.items():
        try:
            ranks[str(name).strip().lower()] = int(rank)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid rank for source {name!r} in {path}") from exc
    logger.debug("Loaded source ranks from %s: %s", path, ranks)
    return ranks


def _tie_break_key(candidate: NormalizedCandidate) -> tuple[str, ...]:
    return (
        candidate.source,
        candidate.source_id or "",
        candidate.download_url or "",
        candidate.cover_url or "",
        candidate.title,
        candidate.author,
        candidate.category,
    )


def pick_better(
    a: NormalizedCandidate,
    b: NormalizedCandidate,
    ranks: Mapping[str, int] = DEFAULT_SOURCE_RANKS,
) -> NormalizedCandidate:
    """Choose the record to keep for one catalog identity.

    Cover presence first, then popularity (missing counts as 0), then source
    rank (lower wins). Remaining ties keep the candidate whose identifying
    fields sort first, which makes the merge independent of arrival order.
    """
    a_cover = bool(a.cover_url)
    b_cover = bool(b.cover_url)
    if a_cover != b_cover:
        return b if b_cover else a

    a_pop = a.source_popularity or 0
    b_pop = b.source_popularity or 0
    if a_pop != b_pop:
        return b if b_pop > a_pop else a

    a_rank = ranks.get(a.source, UNKNOWN_SOURCE_RANK)
    b_rank = ranks.get(b.source, UNKNOWN_SOURCE_RANK)
    if a_rank != b_rank:
        return b if b_rank < a_rank else a

    return b if _tie_break_key(b) < _tie_break_key(a) else a


def merge_candidates(
    candidates: Iterable[NormalizedCandidate],
    ranks: Mapping[str, int] = DEFAULT_SOURCE_RANKS,
) -> dict[str, NormalizedCandidate]:
    merged: dict[str, NormalizedCandidate] = {}
    for candidate in candidates:
        previous = merged.get(candidate.catalog_id)
        merged[candidate.catalog_id] = (
            candidate if previous is None else pick_better(previous, candidate, ranks)
        )
    return merged
