from __future__ import annotations

import httpx
import pytest

from ebook_catalog.sources.standard_ebooks import (
    StandardEbooksSource,
    parse_standard_ebooks_feed,
    pick_epub_link,
)
from ebook_catalog.sources.wolne_lektury import WolneLekturySource, media_url, parse_wolne_lektury_item

STANDARD_EBOOKS_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom" xmlns:media="http://search.yahoo.com/mrss/">
  <title>Standard Ebooks - New Releases</title>
  <id>https://standardebooks.org/feeds/atom/new-releases</id>
  <updated>2024-05-01T00:00:00Z</updated>
  <entry>
    <id>https://standardebooks.org/ebooks/mary-shelley/frankenstein</id>
    <title>Frankenstein</title>
    <updated>2024-05-01T00:00:00Z</updated>
    <author><name>Mary Shelley</name></author>
    <category scheme="http://purl.org/dc/terms/LCSH" term="Horror tales"/>
    <media:thumbnail url="https://standardebooks.org/images/covers/frankenstein-cover.jpg"/>
    <link href="https://standardebooks.org/ebooks/mary-shelley/frankenstein/downloads/frankenstein_advanced.epub"
          rel="enclosure" title="Advanced epub" type="application/epub+zip"/>
    <link href="https://standardebooks.org/ebooks/mary-shelley/frankenstein/downloads/frankenstein.epub"
          rel="enclosure" title="Recommended compatible epub" type="application/epub+zip"/>
  </entry>
  <entry>
    <id>https://standardebooks.org/ebooks/anonymous/no-download</id>
    <title>No Download</title>
    <updated>2024-05-01T00:00:00Z</updated>
    <link href="https://standardebooks.org/ebooks/anonymous/no-download" rel="alternate" type="text/html"/>
  </entry>
</feed>
"""


def test_pick_epub_link_prefers_recommended_compatible() -> None:
    links = [
        {"href": "https://x/advanced.epub", "type": "application/epub+zip", "rel": "enclosure", "title": "Advanced"},
        {"href": "https://x/book.azw3", "type": "application/x-mobi8-ebook", "rel": "enclosure"},
        {
            "href": "https://x/compatible.epub",
            "type": "application/epub+zip",
            "rel": "enclosure",
            "title": "Recommended compatible epub",
        },
    ]
    assert pick_epub_link(links) == "https://x/compatible.epub"
    assert pick_epub_link([{"href": "https://x/a.html", "type": "text/html"}]) is None


def test_parse_standard_ebooks_feed() -> None:
    candidates = parse_standard_ebooks_feed(STANDARD_EBOOKS_FEED)

    assert len(candidates) == 1
    book = candidates[0]
    assert book.title == "Frankenstein"
    assert book.author == "Mary Shelley"
    assert book.language == "en"
    assert book.source == "standardebooks"
    assert book.download_url.endswith("/frankenstein.epub")
    assert book.cover_url == "https://standardebooks.org/images/covers/frankenstein-cover.jpg"
    assert book.subjects == ("Horror tales",)
    assert book.source_id == "standardebooks:https://standardebooks.org/ebooks/mary-shelley/frankenstein"


@pytest.mark.asyncio
async def test_standard_ebooks_only_applies_to_english() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, text=STANDARD_EBOOKS_FEED, headers={"content-type": "application/atom+xml"})

    source = StandardEbooksSource(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), limit=400)

    assert await source.fetch("de") == []
    assert calls == 0
    english = await source.fetch("en")
    assert [c.title for c in english] == ["Frankenstein"]
    assert calls == 1


def test_wolne_lektury_media_urls() -> None:
    assert media_url("book/cover_thumb/pan-tadeusz.jpg") == "https://wolnelektury.pl/media/book/cover_thumb/pan-tadeusz.jpg"
    assert media_url("https://cdn.example/cover.jpg") == "https://cdn.example/cover.jpg"
    assert media_url("") is None


def test_parse_wolne_lektury_item() -> None:
    candidate = parse_wolne_lektury_item(
        {
            "slug": "pan-tadeusz",
            "title": "Pan Tadeusz",
            "author": "Adam Mickiewicz",
            "epoch": "Romantyzm",
            "genre": "Epopeja",
            "kind": "Epika",
            "cover_thumb": "/book/cover_thumb/pan-tadeusz.jpg",
        }
    )

    assert candidate is not None
    assert candidate.language == "pl"
    assert candidate.download_url == "https://wolnelektury.pl/media/book/epub/pan-tadeusz.epub"
    assert candidate.cover_url == "https://wolnelektury.pl/media/book/cover_thumb/pan-tadeusz.jpg"
    assert candidate.subjects == ("Romantyzm", "Epopeja", "Epika")
    assert candidate.source_id == "wolnelektury:pan-tadeusz"
    assert parse_wolne_lektury_item({"slug": "", "title": "x"}) is None


@pytest.mark.asyncio
async def test_wolne_lektury_fetch_respects_limit_and_language() -> None:
    payload = [
        {"slug": f"book-{i}", "title": f"Book {i}", "author": "Autor"} for i in range(5)
    ] + ["garbage"]

    source = WolneLekturySource(
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload))),
        limit=2500,
    )

    assert await source.fetch("en") == []
    books = await source.fetch("pl", 3)
    assert [b.title for b in books] == ["Book 0", "Book 1", "Book 2"]
