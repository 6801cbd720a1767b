from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, ClassVar

import feedparser
import httpx

from ebook_catalog.catalog.models import RawCandidate
from ebook_catalog.catalog.normalize import normalization_key, normalize_for_lookup
from ebook_catalog.shared.concurrency import map_with_concurrency
from ebook_catalog.shared.errors import SourceBlockedError, UpstreamError
from ebook_catalog.shared.settings import normalize_lang
from ebook_catalog.sources.base import SourceFetcher

logger = logging.getLogger(__name__)

MANYBOOKS_OPDS_URL = "https://manybooks.net/opds"
OPDS_ACCEPT = "application/atom+xml,application/xml;q=0.9,*/*;q=0.8"
GENRE_HREF_RE = re.compile(r"/opds/genres/\d+$")
DETAIL_HREF_RE = re.compile(r"/opds/title_detail/(\d+)")
LANGUAGE_RE = re.compile(r"Language(?:</strong>)?\s*:\s*([a-zA-Z-]{2,8})", re.IGNORECASE)
TAG_RE = re.compile(r"<[^>]+>")

PREFERRED_GENRES: tuple[str, ...] = (
    "Travel",
    "Adventure",
    "Mystery",
    "Horror",
    "Fantasy",
    "Science Fiction",
    "Romance",
    "Short Stories",
    "Drama",
    "Comedy",
    "Biography",
    "History",
    "Western",
    "Poetry",
    "Fiction",
    "Nonfiction",
)
MAX_GENRES = 8
PAGES_PER_GENRE = 4
NEW_TITLES_MAX_PAGES = 10
DETAIL_CONCURRENCY = 6


@dataclass(slots=True, frozen=True)
class ManyBooksGenre:
    name: str
    href: str


@dataclass(slots=True, frozen=True)
class ManyBooksDetailRef:
    href: str
    genre: str | None = None


@dataclass(slots=True, frozen=True)
class ManyBooksDetail:
    title: str
    author: str
    language: str
    cover_url: str | None
    epub_url: str | None


def _links(obj: Any) -> list[dict[str, Any]]:
    return list(getattr(obj, "links", None) or [])


def parse_genres(feed_text: str) -> list[ManyBooksGenre]:
    feed = feedparser.parse(feed_text)
    out: list[ManyBooksGenre] = []
    for entry in feed.entries:
        name = " ".join(TAG_RE.sub(" ", str(getattr(entry, "title", "") or "")).split())
        href = next(
            (str(link.get("href")) for link in _links(entry) if GENRE_HREF_RE.search(str(link.get("href") or ""))),
            "",
        )
        if name and href:
            out.append(ManyBooksGenre(name=name, href=href))
    return out


def parse_listing(feed_text: str, genre: str | None = None) -> tuple[list[ManyBooksDetailRef], str | None]:
    feed = feedparser.parse(feed_text)
    refs: list[ManyBooksDetailRef] = []
    for entry in feed.entries:
        for link in _links(entry):
            href = str(link.get("href") or "")
            if DETAIL_HREF_RE.search(href):
                refs.append(ManyBooksDetailRef(href=href, genre=genre))
                break
    next_href = next(
        (str(link.get("href")) for link in _links(feed.feed) if str(link.get("rel") or "") == "next"),
        None,
    )
    return refs, next_href


def parse_title_detail(feed_text: str) -> ManyBooksDetail | None:
    feed = feedparser.parse(feed_text)
    if not feed.entries:
        return None
    entry = feed.entries[0]

    cover_url = None
    epub_url = None
    for rel_marker in ("thumbnail", "cover"):
        for link in _links(entry):
            if rel_marker in str(link.get("rel") or "").lower() and link.get("href"):
                cover_url = str(link["href"])
                break
        if cover_url:
            break
    for link in _links(entry):
        href = str(link.get("href") or "")
        if "application/epub+zip" in str(link.get("type") or "").lower() or href.lower().endswith(".epub"):
            epub_url = href
            break

    content_parts = [str(c.get("value") or "") for c in (getattr(entry, "content", None) or [])]
    content_parts.append(str(getattr(entry, "summary", "") or ""))
    language = ""
    for part in content_parts:
        match = LANGUAGE_RE.search(part)
        if match:
            language = match.group(1).strip().lower()
            break

    return ManyBooksDetail(
        title=" ".join(str(getattr(entry, "title", "") or "").split()),
        author=" ".join(str(getattr(entry, "author", "") or "").split()),
        language=language,
        cover_url=cover_url,
        epub_url=epub_url,
    )


def select_genres(genres: list[ManyBooksGenre]) -> list[ManyBooksGenre]:
    by_key = {normalize_for_lookup(g.name): g for g in genres}
    selected = [by_key[key] for key in (normalize_for_lookup(n) for n in PREFERRED_GENRES) if key in by_key]
    return selected[:MAX_GENRES]


class ManyBooksSource(SourceFetcher):
    """OPDS catalog fetched in two phases: listings, then title_detail feeds."""

    name: ClassVar[str] = "manybooks"
    block_status: ClassVar[tuple[int, ...]] = (403, 429)

    def __init__(self, *, browser_user_agent: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.browser_user_agent = browser_user_agent

    def _headers(self, accept: str) -> dict[str, str]:
        return {
            "Accept": accept,
            "Accept-Language": "en-US,en;q=0.9",
            "User-Agent": self.browser_user_agent,
            "Referer": "https://manybooks.net/",
        }

    async def _get_feed(self, url: str) -> str:
        response = await self._get(url, expect="xml", accept=OPDS_ACCEPT)
        return response.text

    async def _collect(self, url: str, *, max_pages: int, max_refs: int, genre: str | None) -> list[ManyBooksDetailRef]:
        out: list[ManyBooksDetailRef] = []
        next_url: str | None = url
        for _ in range(max_pages):
            if next_url is None or len(out) >= max_refs:
                break
            refs, next_url = parse_listing(await self._get_feed(next_url), genre)
            out.extend(refs[: max_refs - len(out)])
        return out

    async def _detail(self, ref: ManyBooksDetailRef, want_lang: str) -> RawCandidate | None:
        if self.breaker.is_open():
            return None
        try:
            detail = parse_title_detail(await self._get_feed(ref.href))
        except SourceBlockedError as exc:
            self.breaker.trip(exc.reason)
            raise
        except (UpstreamError, httpx.HTTPError, ValueError) as exc:
            logger.debug("manybooks detail %s failed: %s", ref.href, exc)
            return None

        if detail is None or not detail.epub_url or not detail.title:
            return None
        if (normalize_lang(detail.language) or detail.language) != want_lang:
            return None
        match = DETAIL_HREF_RE.search(ref.href)
        return RawCandidate(
            title=detail.title,
            author=detail.author,
            language=want_lang,
            source="manybooks",
            download_url=detail.epub_url,
            cover_url=detail.cover_url,
            subjects=(ref.genre,) if ref.genre else (),
            source_id=(
                f"manybooks:{match.group(1)}"
                if match
                else f"manybooks:{detail.title.lower()}:{detail.author.lower()}"
            ),
        )

    async def _fetch(self, language: str, limit: int) -> list[RawCandidate]:
        genres = select_genres(parse_genres(await self._get_feed(f"{MANYBOOKS_OPDS_URL}/genres")))
        max_candidates = min(420, max(120, limit * 8))

        refs: list[ManyBooksDetailRef] = []
        if genres:
            per_genre = math.ceil(max_candidates / len(genres))
            for genre in genres:
                refs += await self._collect(
                    f"{genre.href}?n=0", max_pages=PAGES_PER_GENRE, max_refs=per_genre, genre=genre.name
                )
        else:
            refs = await self._collect(
                f"{MANYBOOKS_OPDS_URL}/new_titles",
                max_pages=NEW_TITLES_MAX_PAGES,
                max_refs=max_candidates,
                genre=None,
            )

        # Books listed under several genres keep their first genre.
        by_href: dict[str, ManyBooksDetailRef] = {}
        for ref in refs:
            by_href.setdefault(ref.href, ref)
        unique = list(by_href.values())
        parsed = await map_with_concurrency(unique, DETAIL_CONCURRENCY, lambda ref: self._detail(ref, language))

        out: list[RawCandidate] = []
        seen: set[tuple[str, str]] = set()
        for candidate in parsed:
            if candidate is None:
                continue
            key = (normalization_key(candidate.title), normalization_key(candidate.author))
            if key in seen:
                continue
            seen.add(key)
            out.append(candidate)
            if len(out) >= limit:
                break
        return out
