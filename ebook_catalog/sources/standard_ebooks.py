from __future__ import annotations

from typing import Any, ClassVar

import feedparser

from ebook_catalog.catalog.models import RawCandidate
from ebook_catalog.sources.base import SourceFetcher

STANDARD_EBOOKS_FEED_URL = "https://standardebooks.org/feeds/atom/new-releases"
ATOM_ACCEPT = "application/atom+xml,application/xml;q=0.9,*/*;q=0.8"
EPUB_MIME = "application/epub+zip"


def score_epub_link(link: dict[str, Any]) -> int | None:
    """Rank an Atom link as an EPUB download; None when it is not an EPUB."""
    href = str(link.get("href") or "").strip()
    link_type = str(link.get("type") or "").lower()
    if not href or EPUB_MIME not in link_type:
        return None
    rel = str(link.get("rel") or "").lower()
    title = str(link.get("title") or "").lower()

    score = 0
    if "recommended" in title:
        score += 10
    if "compatible" in title:
        score += 3
    if rel == "enclosure":
        score += 2
    if "acquisition" in rel:
        score += 1
    return score


def pick_epub_link(links: list[dict[str, Any]]) -> str | None:
    best_href: str | None = None
    best_score = -1
    for link in links:
        score = score_epub_link(link)
        if score is None or score <= best_score:
            continue
        best_score = score
        best_href = str(link["href"]).strip()
    return best_href


def _entry_author(entry: Any) -> str:
    author = str(getattr(entry, "author", "") or "").strip()
    if author:
        return author
    for item in getattr(entry, "authors", []) or []:
        name = str(item.get("name") or "").strip()
        if name:
            return name
    return ""


def parse_standard_ebooks_feed(feed_text: str) -> list[RawCandidate]:
    feed = feedparser.parse(feed_text)
    out: list[RawCandidate] = []
    for entry in feed.entries:
        title = str(getattr(entry, "title", "") or "").strip()
        if not title:
            continue
        download_url = pick_epub_link(list(getattr(entry, "links", []) or []))
        if not download_url:
            continue

        thumbnails = getattr(entry, "media_thumbnail", None) or []
        cover_url = (str(thumbnails[0].get("url") or "").strip() or None) if thumbnails else None
        subjects = tuple(
            str(tag.get("term")).strip()
            for tag in (getattr(entry, "tags", None) or [])
            if str(tag.get("term") or "").strip()
        )
        entry_id = str(getattr(entry, "id", "") or "").strip()
        author = _entry_author(entry)

        out.append(
            RawCandidate(
                title=title,
                author=author,
                # The public feed carries no language metadata; it is English-only.
                language="en",
                source="standardebooks",
                download_url=download_url,
                cover_url=cover_url,
                subjects=subjects,
                source_id=(
                    f"standardebooks:{entry_id}"
                    if entry_id
                    else f"standardebooks:{title.lower()}:{author.lower()}"
                ),
            )
        )
    return out


class StandardEbooksSource(SourceFetcher):
    name: ClassVar[str] = "standardebooks"
    languages: ClassVar[frozenset[str] | None] = frozenset({"en"})

    async def _fetch(self, language: str, limit: int) -> list[RawCandidate]:
        response = await self._get(STANDARD_EBOOKS_FEED_URL, expect="xml", accept=ATOM_ACCEPT)
        return parse_standard_ebooks_feed(response.text)[:limit]
