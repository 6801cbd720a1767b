from ebook_catalog.enrichment.openlibrary import OpenLibraryClient, OpenLibraryMatch
from ebook_catalog.enrichment.service import EnrichmentResolver, needs_enrichment
from ebook_catalog.enrichment.wikidata import WikidataAuthorResolver

__all__ = [
    "EnrichmentResolver",
    "OpenLibraryClient",
    "OpenLibraryMatch",
    "WikidataAuthorResolver",
    "needs_enrichment",
]
