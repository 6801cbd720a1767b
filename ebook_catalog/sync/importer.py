from __future__ import annotations

import logging
import sqlite3
import time
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from ebook_catalog.catalog.normalize import (
    DEFAULT_CATEGORY,
    build_catalog_id,
    collapse_whitespace,
    has_resolved_author,
    is_generic_gutenberg_cover,
    normalization_key,
    normalize_author_key,
    normalize_main_title,
)
from ebook_catalog.shared.errors import QueryValidationError
from ebook_catalog.storage.repositories import CatalogItemRecord
from ebook_catalog.storage.sqlite import SQLiteStore

logger = logging.getLogger(__name__)

IMPORT_SOURCES = frozenset({"manybooks"})
ALLOWED_DOWNLOAD_HOSTS: dict[str, str] = {"manybooks": "manybooks.net"}
MAX_ITEMS_DEFAULT = 180
MAX_ITEMS_MIN = 20
MAX_ITEMS_MAX = 400
MAX_TOUCHED_CATEGORIES = 60
CATEGORY_MAX_LENGTH = 40


@dataclass(slots=True)
class ImportResult:
    lang: str
    source: str
    received: int = 0
    accepted: int = 0
    upserted: int = 0
    inserted: int = 0
    updated: int = 0
    rejected: int = 0
    reasons: dict[str, int] = field(default_factory=dict)


class ImportRejected(ValueError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def clamp_max_items(value: object) -> int:
    try:
        parsed = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return MAX_ITEMS_DEFAULT
    return max(MAX_ITEMS_MIN, min(MAX_ITEMS_MAX, parsed))


def clean_category(value: object) -> str:
    raw = value.strip() if isinstance(value, str) else ""
    return collapse_whitespace(raw)[:CATEGORY_MAX_LENGTH].strip() or DEFAULT_CATEGORY


def host_allowed(hostname: str | None, allowed: str) -> bool:
    host = (hostname or "").lower()
    return host == allowed or host.endswith(f".{allowed}")


def _text(item: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _http_url(value: str) -> bool:
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme in {"http", "https"} and bool(parts.netloc)


def validate_item(item: Mapping[str, Any], *, lang: str, source: str, now_unix: int) -> CatalogItemRecord:
    """Turn one submitted item into a catalog row or raise ``ImportRejected``."""
    title = normalize_main_title(_text(item, "title"))
    author = collapse_whitespace(_text(item, "author"))
    download_url = _text(item, "downloadUrl", "download_url")
    cover_url = _text(item, "coverUrl", "cover_url")

    if len(title) < 2:
        raise ImportRejected("missing_title")
    if not has_resolved_author(author):
        raise ImportRejected("missing_author")
    if not download_url:
        raise ImportRejected("missing_download_url")
    try:
        parts = urlsplit(download_url)
        hostname = parts.hostname
    except ValueError as exc:
        raise ImportRejected("invalid_download_url") from exc
    if not parts.scheme or not parts.netloc:
        raise ImportRejected("invalid_download_url")
    if parts.scheme not in {"http", "https"}:
        raise ImportRejected("invalid_download_url_protocol")
    if not host_allowed(hostname, ALLOWED_DOWNLOAD_HOSTS[source]):
        raise ImportRejected("download_host_not_allowed")

    popularity = item.get("sourcePopularity", item.get("source_popularity"))
    return CatalogItemRecord(
        id=build_catalog_id(lang, title, author),
        lang=lang,
        title=title,
        author=author,
        category=clean_category(item.get("category")),
        title_norm=normalization_key(title),
        author_norm=normalize_author_key(author),
        source=source,
        download_url=download_url,
        cover_url=cover_url if cover_url and _http_url(cover_url) else None,
        source_id=_text(item, "sourceId", "source_id") or None,
        source_popularity=max(0, int(popularity)) if isinstance(popularity, (int, float)) else None,
        created_at=now_unix,
        updated_at=now_unix,
        last_seen_at=now_unix,
    )


def merge_existing(
    existing: CatalogItemRecord, incoming: CatalogItemRecord, *, now_unix: int
) -> CatalogItemRecord | None:
    """Return the row to write for an id already in the catalog, or None to leave it alone."""
    can_upgrade_cover = bool(incoming.cover_url) and (
        not existing.cover_url or is_generic_gutenberg_cover(existing.cover_url)
    )
    can_backfill_download = not existing.download_url and bool(incoming.download_url)
    if not can_upgrade_cover and not can_backfill_download:
        return None
    return existing.with_updates(
        cover_url=incoming.cover_url if can_upgrade_cover else existing.cover_url,
        download_url=existing.download_url or incoming.download_url,
        source=incoming.source if can_backfill_download else existing.source,
        source_id=incoming.source_id if can_backfill_download else existing.source_id,
        source_popularity=(
            existing.source_popularity if existing.source_popularity is not None else incoming.source_popularity
        ),
        updated_at=now_unix,
        last_seen_at=now_unix,
    )


class CatalogImporter:
    """Ingest client-collected items from a source the server cannot reach itself.

    New ids are inserted. Existing rows are only touched to upgrade a missing
    or generic cover, or to backfill a missing download URL.
    """

    def __init__(
        self,
        *,
        store: SQLiteStore,
        batch_size: int = 400,
        counts_rebuild_throttle_seconds: float = 60.0,
        on_imported: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.batch_size = batch_size
        self.counts_rebuild_throttle_seconds = counts_rebuild_throttle_seconds
        self.on_imported = on_imported
        self.clock = clock
        self.monotonic = monotonic
        self._last_rebuild: dict[str, float] = {}

    def import_items(
        self,
        *,
        lang: str,
        source: str,
        items: Sequence[Mapping[str, Any]],
        max_items: object = None,
    ) -> ImportResult:
        source_name = source.strip().lower()
        if source_name not in IMPORT_SOURCES:
            raise QueryValidationError(f"Unsupported source: {source!r}")
        if not items:
            raise QueryValidationError("items is required")

        now = int(self.clock())
        window = list(items)[: clamp_max_items(max_items)]
        result = ImportResult(lang=lang, source=source_name, received=len(window))
        reasons: Counter[str] = Counter()

        deduped: dict[str, CatalogItemRecord] = {}
        for item in window:
            if not isinstance(item, Mapping):
                reasons["missing_title"] += 1
                continue
            try:
                row = validate_item(item, lang=lang, source=source_name, now_unix=now)
            except ImportRejected as exc:
                reasons[exc.reason] += 1
                continue
            previous = deduped.get(row.id)
            if previous is None:
                deduped[row.id] = row
                continue
            deduped[row.id] = previous.with_updates(
                cover_url=previous.cover_url or row.cover_url,
                source_id=previous.source_id or row.source_id,
                source_popularity=previous.source_popularity or row.source_popularity,
            )

        result.accepted = len(deduped)
        result.rejected = sum(reasons.values())
        result.reasons = dict(reasons)

        existing = self.store.get_items_by_ids(deduped)
        to_write: list[CatalogItemRecord] = []
        for row_id, row in deduped.items():
            current = existing.get(row_id)
            if current is None:
                result.inserted += 1
                to_write.append(row)
                continue
            merged = merge_existing(current, row, now_unix=now)
            if merged is not None:
                result.updated += 1
                to_write.append(merged)

        if to_write:
            result.upserted = self.store.upsert_catalog_items(to_write, batch_size=self.batch_size)
            self._refresh_counts(lang, to_write, now)
            if self.on_imported is not None:
                self.on_imported(lang)

        logger.info(
            "Catalog import source=%s lang=%s received=%d accepted=%d upserted=%d inserted=%d updated=%d rejected=%d",
            source_name,
            lang,
            result.received,
            result.accepted,
            result.upserted,
            result.inserted,
            result.updated,
            result.rejected,
        )
        return result

    def _refresh_counts(self, lang: str, rows: Sequence[CatalogItemRecord], now: int) -> None:
        touched = list(dict.fromkeys(row.category for row in rows if row.category))[:MAX_TOUCHED_CATEGORIES]
        if touched:
            try:
                self.store.refresh_category_counts(lang, touched, now_unix=now)
            except sqlite3.Error as exc:
                logger.warning("Incremental category counts failed for %s (non-fatal): %s", lang, exc)

        # Author counts only change on a full rebuild.
        last = self._last_rebuild.get(lang)
        current = self.monotonic()
        if last is not None and current - last < self.counts_rebuild_throttle_seconds:
            return
        self._last_rebuild[lang] = current
        try:
            self.store.rebuild_counts(lang, now_unix=now)
        except sqlite3.Error as exc:
            logger.warning("Count rebuild failed for %s (non-fatal): %s", lang, exc)
