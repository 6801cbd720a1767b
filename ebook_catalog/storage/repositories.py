from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal

from ebook_catalog.catalog.models import NormalizedCandidate

SyncStatus = Literal["idle", "running", "error"]


@dataclass(slots=True, frozen=True)
class CatalogItemRecord:
    id: str
    lang: str
    title: str
    author: str
    category: str
    title_norm: str
    author_norm: str
    source: str
    download_url: str | None
    cover_url: str | None = None
    source_id: str | None = None
    source_popularity: int | None = None
    created_at: int = 0
    updated_at: int = 0
    last_seen_at: int = 0

    def with_updates(self, **changes: object) -> CatalogItemRecord:
        return replace(self, **changes)  # type: ignore[arg-type]


@dataclass(slots=True, frozen=True)
class CategoryCount:
    category: str
    count: int


@dataclass(slots=True, frozen=True)
class AuthorCount:
    author: str
    author_norm: str
    count: int


@dataclass(slots=True, frozen=True)
class SyncStateRecord:
    lang: str
    status: SyncStatus = "idle"
    last_started_at: int | None = None
    last_completed_at: int | None = None
    last_error: str | None = None
    last_items_upserted: int = 0
    updated_at: int | None = None


def record_from_candidate(candidate: NormalizedCandidate, *, now_unix: int) -> CatalogItemRecord:
    return CatalogItemRecord(
        id=candidate.catalog_id,
        lang=candidate.language,
        title=candidate.title,
        author=candidate.author,
        category=candidate.category,
        title_norm=candidate.title_norm,
        author_norm=candidate.author_norm,
        source=candidate.source,
        download_url=candidate.download_url,
        cover_url=candidate.cover_url,
        source_id=candidate.source_id,
        source_popularity=candidate.source_popularity,
        created_at=now_unix,
        updated_at=now_unix,
        last_seen_at=now_unix,
    )
