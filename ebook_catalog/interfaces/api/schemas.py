from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ebook_catalog.query.models import CatalogStatus, Overview, Page, PublicItem


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EbookItem(CamelModel):
    id: str
    title: str
    author: str
    language: str
    category: str
    cover_url: str | None = None
    download_url: str | None = None

    @classmethod
    def from_item(cls, item: PublicItem) -> EbookItem:
        return cls(
            id=item.id,
            title=item.title,
            author=item.author,
            language=item.language,
            category=item.category,
            cover_url=item.cover_url,
            download_url=item.download_url,
        )


class TopAuthorResponse(CamelModel):
    name: str
    count: int


class OverviewResponse(CamelModel):
    lang: str
    generated_at: str | None = None
    categories: list[str] = Field(default_factory=list)
    top_authors: list[TopAuthorResponse] = Field(default_factory=list)
    trending: list[EbookItem] = Field(default_factory=list)
    by_category: dict[str, list[EbookItem]] = Field(default_factory=dict)

    @classmethod
    def from_overview(cls, overview: Overview) -> OverviewResponse:
        return cls(
            lang=overview.lang,
            generated_at=overview.generated_at,
            categories=list(overview.categories),
            top_authors=[TopAuthorResponse(name=a.name, count=a.count) for a in overview.top_authors],
            trending=[EbookItem.from_item(item) for item in overview.trending],
            by_category={
                category: [EbookItem.from_item(item) for item in items]
                for category, items in overview.by_category.items()
            },
        )


class CategoryCountResponse(CamelModel):
    category: str
    count: int


class PageFields(CamelModel):
    lang: str
    generated_at: str | None = None
    total: int
    cursor: int
    limit: int
    next_cursor: int | None = None

    @staticmethod
    def fields_from(page: Page[Any]) -> dict[str, Any]:
        return {
            "lang": page.lang,
            "generated_at": page.generated_at,
            "total": page.total,
            "cursor": page.cursor,
            "limit": page.limit,
            "next_cursor": page.next_cursor,
        }


class CategoriesResponse(PageFields):
    items: list[CategoryCountResponse] = Field(default_factory=list)


class CategoryPageResponse(PageFields):
    category: str
    items: list[EbookItem] = Field(default_factory=list)


class AuthorPageResponse(PageFields):
    author: str
    items: list[EbookItem] = Field(default_factory=list)


class SearchPageResponse(PageFields):
    query: str
    items: list[EbookItem] = Field(default_factory=list)


class CatalogStatusResponse(CamelModel):
    lang: str
    status: str
    last_started_at: str | None = None
    last_completed_at: str | None = None
    last_error: str | None = None
    last_upserted: int = 0
    total: int = 0
    in_flight: bool = False

    @classmethod
    def from_status(cls, status: CatalogStatus) -> CatalogStatusResponse:
        return cls(
            lang=status.lang,
            status=status.status,
            last_started_at=status.last_started_at,
            last_completed_at=status.last_completed_at,
            last_error=status.last_error,
            last_upserted=status.last_items_upserted,
            total=status.total,
            in_flight=status.in_flight,
        )


class SyncRequest(CamelModel):
    lang: str | None = None


class SyncResponse(CamelModel):
    lang: str
    upserted: int
    merged: int = 0
    fetched: dict[str, int] = Field(default_factory=dict)


class ImportRequest(CamelModel):
    source: str = ""
    lang: str | None = None
    max_items: int | None = None
    items: list[dict[str, Any]] = Field(default_factory=list)


class ImportResponse(CamelModel):
    lang: str
    source: str
    received: int
    accepted: int
    upserted: int
    inserted: int
    updated: int
    rejected: int


class HealthResponse(CamelModel):
    status: str
    sqlite: str
    languages: list[str] = Field(default_factory=list)
