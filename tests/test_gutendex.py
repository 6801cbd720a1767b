from __future__ import annotations

from typing import Any

import httpx
import pytest

from ebook_catalog.shared.errors import SourceUnavailableError
from ebook_catalog.sources.circuit import SourceCircuitBreaker
from ebook_catalog.sources.gutendex import GutendexSource, parse_gutendex_book, plan_max_pages


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def _no_sleep(delay: float) -> None:
    return None


def _book(book_id: int, title: str, author: str = "Austen, Jane", **overrides: Any) -> dict[str, Any]:
    book: dict[str, Any] = {
        "id": book_id,
        "title": title,
        "authors": [{"name": author}],
        "subjects": ["Love stories"],
        "bookshelves": ["Best Books Ever Listings"],
        "media_type": "Text",
        "formats": {
            "application/epub+zip": f"https://www.gutenberg.org/ebooks/{book_id}.epub3.images",
            "image/jpeg": f"https://www.gutenberg.org/cache/epub/{book_id}/pg{book_id}.cover.medium.jpg",
        },
        "download_count": 10_000 - book_id,
    }
    book.update(overrides)
    return book


def _source(handler, clock: FakeClock | None = None, **kwargs: Any) -> GutendexSource:  # type: ignore[no-untyped-def]
    return GutendexSource(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        breaker=SourceCircuitBreaker("gutendex", cooldown_seconds=3600.0, clock=clock or FakeClock()),
        limit=50,
        max_retries=0,
        sleep=_no_sleep,
        **kwargs,
    )


def test_plan_max_pages_bounds() -> None:
    assert plan_max_pages(10, 40) == 6
    assert plan_max_pages(1200, 80) == 69
    assert plan_max_pages(5000, 80) == 80


def test_parse_gutendex_book_maps_fields() -> None:
    candidate = parse_gutendex_book(_book(1342, "Pride and Prejudice"), "en")

    assert candidate is not None
    assert candidate.source == "gutendex"
    assert candidate.language == "en"
    assert candidate.author == "Austen, Jane"
    assert candidate.source_id == "gutenberg:1342"
    assert candidate.source_popularity == 10_000 - 1342
    assert candidate.subjects == ("Love stories", "Best Books Ever Listings")
    assert candidate.download_url == "https://www.gutenberg.org/ebooks/1342.epub3.images"


def test_parse_gutendex_book_skips_audio_and_missing_epub() -> None:
    assert parse_gutendex_book(_book(1, "Audio", media_type="Sound"), "en") is None
    assert parse_gutendex_book(_book(2, "No epub", formats={"text/plain": "x"}), "en") is None
    assert parse_gutendex_book(_book(3, "  "), "en") is None


@pytest.mark.asyncio
async def test_fetch_paginates_until_404_and_dedupes() -> None:
    pages = {
        "1": [_book(1, "Emma"), _book(2, "Persuasion"), _book(3, "Emma")],
        "2": [_book(4, "Sense and Sensibility")],
    }
    seen_params: list[dict[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        seen_params.append(params)
        results = pages.get(params["page"])
        if results is None:
            return httpx.Response(404, json={"detail": "Invalid page."})
        return httpx.Response(200, json={"results": results})

    source = _source(handler)
    candidates = await source.fetch("en")

    assert [c.title for c in candidates] == ["Emma", "Persuasion", "Sense and Sensibility"]
    assert seen_params[0] == {"languages": "en", "sort": "popular", "page": "1"}
    assert len(seen_params) == 3


@pytest.mark.asyncio
async def test_rate_limit_mid_crawl_keeps_partial_results_without_tripping() -> None:
    clock = FakeClock()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["page"] == "1":
            return httpx.Response(200, json={"results": [_book(1, "Emma"), _book(2, "Persuasion")]})
        return httpx.Response(429)

    source = _source(handler, clock)
    candidates = await source.fetch("en")

    assert [c.title for c in candidates] == ["Emma", "Persuasion"]
    assert not source.breaker.is_open()


@pytest.mark.asyncio
async def test_server_error_on_later_page_keeps_partial_results() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["page"] == "1":
            return httpx.Response(200, json={"results": [_book(1, "Emma"), _book(2, "Persuasion")]})
        return httpx.Response(502)

    source = _source(handler)
    candidates = await source.fetch("en")

    assert [c.title for c in candidates] == ["Emma", "Persuasion"]
    assert not source.breaker.is_open()


@pytest.mark.asyncio
async def test_rate_limit_on_first_page_is_unavailable_not_blocked() -> None:
    source = _source(lambda request: httpx.Response(429))

    with pytest.raises(SourceUnavailableError):
        await source.fetch("en")

    assert not source.breaker.is_open()


@pytest.mark.asyncio
async def test_unexpected_payload_shape_surfaces_as_source_unavailable() -> None:
    source = _source(lambda request: httpx.Response(200, json=[{"unexpected": "list"}]))

    with pytest.raises(SourceUnavailableError) as excinfo:
        await source.fetch("en")

    assert "unexpected payload" in excinfo.value.reason


@pytest.mark.asyncio
async def test_unexpected_payload_on_later_page_keeps_partial_results() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["page"] == "1":
            return httpx.Response(200, json={"results": [_book(1, "Emma")]})
        return httpx.Response(200, json={"results": "oops"})

    source = _source(handler)

    assert [c.title for c in await source.fetch("en")] == ["Emma"]


@pytest.mark.asyncio
async def test_block_on_first_page_opens_circuit_and_skips_network() -> None:
    clock = FakeClock()
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(403)

    source = _source(handler, clock)

    assert await source.fetch("en") == []
    assert source.breaker.is_open()
    assert await source.fetch("en") == []
    assert calls == 1

    clock.now += 3601.0
    assert await source.fetch("en") == []
    assert calls == 2


@pytest.mark.asyncio
async def test_html_challenge_page_counts_as_block() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            text="<!DOCTYPE html><title>Just a moment...</title>",
            headers={"content-type": "text/html"},
        )

    source = _source(handler)

    assert await source.fetch("en") == []
    assert source.breaker.is_open()


@pytest.mark.asyncio
async def test_server_error_surfaces_as_source_unavailable() -> None:
    source = _source(lambda request: httpx.Response(500))

    with pytest.raises(SourceUnavailableError) as excinfo:
        await source.fetch("en")

    assert excinfo.value.source == "gutendex"
    assert not source.breaker.is_open()
