from __future__ import annotations

import re
from typing import Any, ClassVar
from urllib.parse import quote

from ebook_catalog.catalog.models import RawCandidate
from ebook_catalog.sources.base import SourceFetcher

WOLNE_LEKTURY_API_URL = "https://wolnelektury.pl/api/books/"
WOLNE_LEKTURY_MEDIA_URL = "https://wolnelektury.pl/media/"
ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)


def media_url(relative: str | None) -> str | None:
    value = (relative or "").strip()
    if not value:
        return None
    if ABSOLUTE_URL_RE.match(value):
        return value
    return f"{WOLNE_LEKTURY_MEDIA_URL}{value.lstrip('/')}"


def epub_url(slug: str) -> str:
    return f"{WOLNE_LEKTURY_MEDIA_URL}book/epub/{quote(slug, safe='')}.epub"


def parse_wolne_lektury_item(item: dict[str, Any]) -> RawCandidate | None:
    slug = str(item.get("slug") or "").strip()
    title = str(item.get("title") or "").strip()
    if not slug or not title:
        return None
    subjects = tuple(
        str(item[field]).strip()
        for field in ("epoch", "genre", "kind")
        if isinstance(item.get(field), str) and str(item[field]).strip()
    )
    return RawCandidate(
        title=title,
        author=str(item.get("author") or ""),
        language="pl",
        source="wolnelektury",
        download_url=epub_url(slug),
        cover_url=media_url(item.get("cover_thumb")) or media_url(item.get("cover")),
        subjects=subjects,
        source_id=f"wolnelektury:{slug}",
    )


class WolneLekturySource(SourceFetcher):
    name: ClassVar[str] = "wolnelektury"
    languages: ClassVar[frozenset[str] | None] = frozenset({"pl"})

    async def _fetch(self, language: str, limit: int) -> list[RawCandidate]:
        payload = await self._get_json(WOLNE_LEKTURY_API_URL)
        items = payload if isinstance(payload, list) else []
        out: list[RawCandidate] = []
        for item in items:
            if len(out) >= limit:
                break
            if not isinstance(item, dict):
                continue
            candidate = parse_wolne_lektury_item(item)
            if candidate is not None:
                out.append(candidate)
        return out
