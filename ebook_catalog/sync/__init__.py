from ebook_catalog.sync.importer import CatalogImporter, ImportResult
from ebook_catalog.sync.scheduler import SyncScheduler
from ebook_catalog.sync.service import SyncOrchestrator, SyncResult

__all__ = [
    "CatalogImporter",
    "ImportResult",
    "SyncOrchestrator",
    "SyncResult",
    "SyncScheduler",
]
