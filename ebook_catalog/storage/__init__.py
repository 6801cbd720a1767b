from ebook_catalog.storage.repositories import (
    AuthorCount,
    CatalogItemRecord,
    CategoryCount,
    SyncStateRecord,
    record_from_candidate,
)
from ebook_catalog.storage.sqlite import SQLiteStore

__all__ = [
    "AuthorCount",
    "CatalogItemRecord",
    "CategoryCount",
    "SQLiteStore",
    "SyncStateRecord",
    "record_from_candidate",
]
