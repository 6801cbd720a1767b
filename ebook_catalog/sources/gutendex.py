from __future__ import annotations

import logging
import math
from typing import Any, ClassVar

import httpx

from ebook_catalog.catalog.models import RawCandidate
from ebook_catalog.catalog.normalize import normalization_key
from ebook_catalog.shared.errors import SourceBlockedError, UpstreamError
from ebook_catalog.sources.base import SourceFetcher

logger = logging.getLogger(__name__)

GUTENDEX_BOOKS_URL = "https://gutendex.com/books/"
EPUB_MIME = "application/epub+zip"
COVER_MIME = "image/jpeg"
DEFAULT_MAX_PAGES = 40


def plan_max_pages(limit: int, max_pages_cap: int = DEFAULT_MAX_PAGES) -> int:
    """Pages needed for ``limit`` books at ~18 usable results per page."""
    return min(max(1, max_pages_cap), max(6, math.ceil(limit / 18) + 2))


def parse_gutendex_book(item: dict[str, Any], language: str) -> RawCandidate | None:
    title = item.get("title")
    if not isinstance(title, str) or not title.strip():
        return None
    media_type = item.get("media_type")
    if media_type and str(media_type).lower() != "text":
        return None

    formats = item.get("formats") or {}
    download_url = formats.get(EPUB_MIME)
    if not download_url:
        return None

    authors = item.get("authors") or []
    author = ""
    if authors and isinstance(authors[0], dict):
        author = str(authors[0].get("name") or "")

    subjects = [str(s) for s in (item.get("subjects") or []) if s]
    subjects += [str(s) for s in (item.get("bookshelves") or []) if s]

    popularity = item.get("download_count")
    return RawCandidate(
        title=title,
        author=author,
        # Requested with languages=<lang>, so the language is taken from the query.
        language=language,
        source="gutendex",
        download_url=download_url,
        cover_url=formats.get(COVER_MIME) or None,
        subjects=tuple(subjects),
        source_id=f"gutenberg:{item.get('id')}",
        source_popularity=popularity if isinstance(popularity, int) else None,
    )


class GutendexSource(SourceFetcher):
    name: ClassVar[str] = "gutendex"

    def __init__(self, *, max_pages: int = DEFAULT_MAX_PAGES, page_delay_seconds: float = 0.0, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.max_pages = max_pages
        self.page_delay_seconds = page_delay_seconds

    async def _fetch(self, language: str, limit: int) -> list[RawCandidate]:
        out: list[RawCandidate] = []
        seen: set[tuple[str, str]] = set()
        max_pages = plan_max_pages(limit, self.max_pages)

        page = 1
        while len(out) < limit and page <= max_pages:
            try:
                response = await self._get(
                    GUTENDEX_BOOKS_URL,
                    params={"languages": language, "sort": "popular", "page": page},
                    allow_status=(404,),
                )
            except SourceBlockedError as exc:
                if not out:
                    raise
                self.breaker.trip(exc.reason)
                logger.warning("gutendex stopped at page %d (%s); keeping %d results", page, exc.reason, len(out))
                break
            except (UpstreamError, httpx.HTTPError) as exc:
                if not out:
                    raise
                # Rate limited or failing mid-crawl: keep what we have.
                logger.warning("gutendex stopped early at page %d (%s); keeping %d results", page, exc, len(out))
                break

            if response.status_code == 404:
                break

            try:
                payload = response.json()
            except ValueError:
                payload = None
            results = payload.get("results") if isinstance(payload, dict) else None
            if not isinstance(results, list):
                if not out:
                    raise UpstreamError(f"gutendex page {page} returned an unexpected payload")
                logger.warning("gutendex page %d returned an unexpected payload; keeping %d results", page, len(out))
                break
            if not results:
                break
            for item in results:
                if len(out) >= limit:
                    break
                if not isinstance(item, dict):
                    continue
                candidate = parse_gutendex_book(item, language)
                if candidate is None:
                    continue
                key = (normalization_key(candidate.title), normalization_key(candidate.author))
                if key in seen:
                    continue
                seen.add(key)
                out.append(candidate)

            page += 1
            if self.page_delay_seconds > 0:
                await self.sleep(self.page_delay_seconds)

        return out
