from __future__ import annotations


class CatalogError(Exception):
    """Base exception for all ebook-catalog errors."""


class UpstreamError(CatalogError):
    """Raised when an upstream request keeps failing after retries."""


class SourceUnavailableError(CatalogError):
    """Raised when a whole source cannot produce candidates for this run."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class SourceBlockedError(SourceUnavailableError):
    """Raised when a source answers with a challenge page or a blocking status."""

    def __init__(self, source: str, status_code: int) -> None:
        super().__init__(source, f"blocked (HTTP {status_code})")
        self.status_code = status_code


class SyncError(CatalogError):
    """Raised when a catalog sync fails at the orchestrator level."""


class QueryValidationError(CatalogError):
    """Raised when a catalog query is missing required input."""


class NotFoundError(CatalogError):
    """Raised when a category or author listing has no rows."""
