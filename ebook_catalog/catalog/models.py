from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal

SourceName = Literal["standardebooks", "wolnelektury", "gutendex", "wikisource", "manybooks"]

UNKNOWN_AUTHOR = "Unknown"

CATEGORY_ORDER: tuple[str, ...] = (
    "Travel",
    "Adventure",
    "Mystery",
    "Horror",
    "Fantasy",
    "Science Fiction",
    "Mythic",
    "Children's",
    "Romance",
    "Short Stories",
    "Drama",
    "Comedy",
    "Biography",
    "History",
    "Western",
    "Poetry",
    "Fiction",
    "Nonfiction",
)


@dataclass(slots=True, frozen=True)
class RawCandidate:
    title: str
    author: str
    language: str
    source: str
    download_url: str | None = None
    cover_url: str | None = None
    subjects: tuple[str, ...] = field(default_factory=tuple)
    source_id: str | None = None
    source_popularity: int | None = None


@dataclass(slots=True, frozen=True)
class NormalizedCandidate:
    catalog_id: str
    language: str
    title: str
    author: str
    category: str
    title_norm: str
    author_norm: str
    source: str
    download_url: str | None = None
    cover_url: str | None = None
    source_id: str | None = None
    source_popularity: int | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.language, self.title_norm, self.author_norm)

    @property
    def has_resolved_author(self) -> bool:
        value = self.author.strip()
        return bool(value) and value.lower() != UNKNOWN_AUTHOR.lower()

    def with_updates(self, **changes: object) -> NormalizedCandidate:
        return replace(self, **changes)  # type: ignore[arg-type]
