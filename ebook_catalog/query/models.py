from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Generic, TypeVar

T = TypeVar("T")


def iso_timestamp(unix: int | float | None) -> str | None:
    if unix is None:
        return None
    return datetime.fromtimestamp(unix, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def next_cursor(cursor: int, returned: int, limit: int, total: int) -> int | None:
    if returned < limit or cursor + returned >= total:
        return None
    return cursor + returned


@dataclass(slots=True, frozen=True)
class PublicItem:
    id: str
    title: str
    author: str
    language: str
    category: str
    cover_url: str | None
    download_url: str | None


@dataclass(slots=True, frozen=True)
class TopAuthor:
    name: str
    count: int


@dataclass(slots=True, frozen=True)
class CategoryEntry:
    category: str
    count: int


@dataclass(slots=True, frozen=True)
class Page(Generic[T]):
    lang: str
    items: list[T]
    cursor: int
    limit: int
    total: int
    next_cursor: int | None
    generated_at: str | None = None


@dataclass(slots=True, frozen=True)
class AuthorListing:
    author: str
    page: Page[PublicItem]


@dataclass(slots=True, frozen=True)
class Overview:
    lang: str
    generated_at: str | None
    categories: list[str]
    top_authors: list[TopAuthor]
    trending: list[PublicItem]
    by_category: dict[str, list[PublicItem]] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class CatalogStatus:
    lang: str
    status: str
    last_started_at: str | None
    last_completed_at: str | None
    last_error: str | None
    last_items_upserted: int
    total: int
    in_flight: bool = False
