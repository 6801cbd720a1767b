from ebook_catalog.catalog.merge import load_source_ranks, merge_candidates, pick_better
from ebook_catalog.catalog.models import CATEGORY_ORDER, UNKNOWN_AUTHOR, NormalizedCandidate, RawCandidate
from ebook_catalog.catalog.normalize import build_catalog_id, normalize_candidate

__all__ = [
    "CATEGORY_ORDER",
    "NormalizedCandidate",
    "RawCandidate",
    "UNKNOWN_AUTHOR",
    "build_catalog_id",
    "load_source_ranks",
    "merge_candidates",
    "normalize_candidate",
    "pick_better",
]
