from ebook_catalog.query.live import LiveAggregator
from ebook_catalog.query.models import AuthorListing, CatalogStatus, CategoryEntry, Overview, Page, PublicItem, TopAuthor
from ebook_catalog.query.service import QueryService

__all__ = [
    "AuthorListing",
    "CatalogStatus",
    "CategoryEntry",
    "LiveAggregator",
    "Overview",
    "Page",
    "PublicItem",
    "QueryService",
    "TopAuthor",
]
