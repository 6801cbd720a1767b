from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ebook_catalog.catalog.normalize import has_resolved_author, normalize_for_lookup, normalize_main_title
from ebook_catalog.shared.http import http_request_with_retry

logger = logging.getLogger(__name__)

OPEN_LIBRARY_SEARCH_URL = "https://openlibrary.org/search.json"
OPEN_LIBRARY_COVER_URL = "https://covers.openlibrary.org/b/id/{cover_id}-L.jpg"
SEARCH_FIELDS = "title,author_name,cover_i"


@dataclass(slots=True, frozen=True)
class OpenLibraryMatch:
    cover_url: str | None = None
    author: str | None = None
    title: str | None = None

    @property
    def found(self) -> bool:
        return bool(self.cover_url or self.author or self.title)


NO_MATCH = OpenLibraryMatch()


def cover_url_for(cover_id: int) -> str:
    return OPEN_LIBRARY_COVER_URL.format(cover_id=cover_id)


def _token_overlap(want: str, have: str) -> int:
    return len(set(want.split()) & set(have.split()))


def score_doc(doc: dict[str, Any], want_title: str, want_author: str) -> int:
    have_title = normalize_for_lookup(str(doc.get("title") or ""))
    have_author = normalize_for_lookup(" ".join(str(a) for a in doc.get("author_name") or []))

    if have_title == want_title:
        score = 10
    elif want_title in have_title or have_title in want_title:
        score = 6
    else:
        score = min(4, _token_overlap(want_title, have_title))

    if want_author and want_author != "unknown":
        if want_author in have_author or (have_author and have_author in want_author):
            score += 5
        else:
            score += min(3, _token_overlap(want_author, have_author))
    return score


def match_threshold(want_title: str, author_known: bool) -> int:
    if author_known:
        return 8
    # Short titles without an author are too ambiguous for anything but an exact hit.
    return 10 if len(want_title.split()) <= 3 else 8


def pick_best_doc(
    docs: list[dict[str, Any]],
    title: str,
    author: str | None = None,
    *,
    require_cover: bool = False,
    require_author: bool = False,
) -> dict[str, Any] | None:
    want_title = normalize_for_lookup(title)
    want_author = normalize_for_lookup(author or "")
    author_known = bool(want_author) and want_author != "unknown"

    best: tuple[int, int] | None = None
    best_doc: dict[str, Any] | None = None
    for doc in docs:
        doc_title = doc.get("title")
        cover_id = doc.get("cover_i") if isinstance(doc.get("cover_i"), int) else None
        has_author = bool(doc.get("author_name"))
        if not isinstance(doc_title, str) or not doc_title or (cover_id is None and not has_author):
            continue
        if require_cover and cover_id is None:
            continue
        if require_author and not has_author:
            continue

        score = score_doc(doc, want_title, want_author if author_known else "")
        bonus = (1 if cover_id is not None else 0) + (1 if has_author else 0)
        if best is None or (score, bonus) > best:
            best = (score, bonus)
            best_doc = doc

    if best is None or best[0] < match_threshold(want_title, author_known):
        return None
    return best_doc


def match_from_docs(docs: list[dict[str, Any]], title: str, author: str | None) -> OpenLibraryMatch:
    cover_doc = pick_best_doc(docs, title, author, require_cover=True)
    author_doc = pick_best_doc(docs, title, author, require_author=True)

    cover_url = cover_url_for(int(cover_doc["cover_i"])) if cover_doc else None
    best_author = None
    best_title = None
    if author_doc is not None:
        names = author_doc.get("author_name") or []
        first = str(names[0]).strip() if names else ""
        best_author = first if has_resolved_author(first) else None
        best_title = normalize_main_title(str(author_doc.get("title") or "")) or None
    return OpenLibraryMatch(cover_url=cover_url, author=best_author, title=best_title)


class OpenLibraryClient:
    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        user_agent: str = "ebook-catalog/0.1 (metadata-enrichment)",
        timeout_seconds: float = 3.5,
        max_retries: int = 1,
    ) -> None:
        self.client = client
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries

    async def search(self, title: str, author: str | None = None) -> OpenLibraryMatch:
        params = {"title": title, "limit": "10", "fields": SEARCH_FIELDS}
        if author and has_resolved_author(author):
            params["author"] = author
        response = await http_request_with_retry(
            self.client,
            "GET",
            OPEN_LIBRARY_SEARCH_URL,
            params=params,
            headers={"Accept": "application/json", "User-Agent": self.user_agent},
            timeout=self.timeout_seconds,
            max_retries=self.max_retries,
            error_label="OpenLibrary search",
        )
        payload = response.json()
        docs = payload.get("docs") if isinstance(payload, dict) else None
        return match_from_docs([d for d in docs or [] if isinstance(d, dict)], title, author)
