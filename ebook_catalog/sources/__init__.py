from ebook_catalog.sources.base import SourceFetcher
from ebook_catalog.sources.circuit import SourceCircuitBreaker, looks_blocked
from ebook_catalog.sources.registry import SourceRegistry, build_sources

__all__ = [
    "SourceCircuitBreaker",
    "SourceFetcher",
    "SourceRegistry",
    "build_sources",
    "looks_blocked",
]
