from __future__ import annotations

from datetime import date
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from ebook_catalog.sources.wikisource import (
    WikisourceSource,
    author_from_categories,
    decode_db_key,
    is_non_content_title,
    is_usable_page,
    parse_author_from_wikitext,
    wsexport_epub_url,
)


async def _no_sleep(delay: float) -> None:
    return None


def test_title_helpers() -> None:
    assert decode_db_key("A_Christmas_Carol") == "A Christmas Carol"
    assert decode_db_key("Caf%C3%A9_Society") == "Café Society"
    assert is_non_content_title("Main_Page")
    assert is_non_content_title("Special:Search")
    assert not is_non_content_title("Portal:Poetry", allow_colon=True)
    assert wsexport_epub_url("en", "The Raven") == (
        "https://ws-export.wmcloud.org/?lang=en&page=The_Raven&format=epub"
    )


def test_author_from_categories() -> None:
    assert author_from_categories(["Poems", "Author: Edgar Allan Poe"]) == "Edgar Allan Poe"
    assert author_from_categories(["Автор:Лев Толстой"]) == "Лев Толстой"
    assert author_from_categories(["Author:Unknown", "Author:Al"]) is None


def test_parse_author_from_wikitext_prefers_header_param() -> None:
    wikitext = "{{header\n | title = The Raven\n | author = [[Author:Edgar Allan Poe|Poe]]\n}}"
    assert parse_author_from_wikitext(wikitext, ["Author"]) == "Edgar Allan Poe"


def test_parse_author_from_wikitext_falls_back_to_namespace_link() -> None:
    wikitext = "Ein Gedicht von [[Autor:Johann Wolfgang_von Goethe]]."
    assert parse_author_from_wikitext(wikitext, ["Autor"]) == "Johann Wolfgang von Goethe"
    assert parse_author_from_wikitext("no author here", ["Author"]) is None


def test_is_usable_page_filters_stubs_and_academic_pages() -> None:
    assert is_usable_page({"title": "The Raven", "length": 5000})
    assert not is_usable_page({"title": "The Raven", "length": 300})
    assert not is_usable_page({"title": "Journal of Botany", "length": 9000})
    assert not is_usable_page(
        {"title": "Elements", "length": 9000, "categories": [{"title": "Category:Mathematics"}]}
    )


def _wikisource_handler(requests: list[httpx.Request]):  # type: ignore[no-untyped-def]
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.host == "wikimedia.org":
            articles = [
                {"article": "Main_Page"},
                {"article": "The_Raven"},
                {"article": "Special:Search"},
                {"article": "A_Christmas_Carol"},
                {"article": "Tiny_Stub"},
            ]
            return httpx.Response(200, json={"items": [{"articles": articles}]})

        params = request.url.params
        if params.get("prop") == "info|pageimages|categories|pageprops":
            pages: dict[str, Any] = {
                "1": {
                    "pageid": 1,
                    "title": "The Raven",
                    "length": 5000,
                    "categories": [{"title": "Category:Author:Edgar Allan Poe"}, {"title": "Category:Poems"}],
                    "thumbnail": {"source": "https://upload.wikimedia.org/raven.jpg"},
                    "pageprops": {"wikibase_item": "Q1"},
                },
                "2": {
                    "pageid": 2,
                    "title": "A Christmas Carol",
                    "length": 90000,
                    "pageprops": {"wikibase_item": "Q2"},
                },
                "3": {"pageid": 3, "title": "Tiny Stub", "length": 120},
                "-1": {"title": "Gone", "missing": ""},
            }
            return httpx.Response(200, json={"query": {"pages": pages}})
        return httpx.Response(400)

    return handler


@pytest.mark.asyncio
async def test_fetch_builds_candidates_from_top_pages() -> None:
    requests: list[httpx.Request] = []
    wikidata = MagicMock()
    wikidata.resolve_work_authors = AsyncMock(return_value={"Q2": "Charles Dickens"})

    source = WikisourceSource(
        client=httpx.AsyncClient(transport=httpx.MockTransport(_wikisource_handler(requests))),
        wikidata=wikidata,
        limit=10,
        max_retries=0,
        sleep=_no_sleep,
        today=lambda: date(2024, 5, 10),
    )
    candidates = await source.fetch("en")

    assert requests[0].url.path.endswith("/en.wikisource.org/all-access/2024/05/09")
    assert [(c.title, c.author) for c in candidates] == [
        ("The Raven", "Edgar Allan Poe"),
        ("A Christmas Carol", "Charles Dickens"),
    ]
    raven = candidates[0]
    assert raven.cover_url == "https://upload.wikimedia.org/raven.jpg"
    assert raven.download_url == "https://ws-export.wmcloud.org/?lang=en&page=The_Raven&format=epub"
    assert raven.source_id == "wikisource:en:1"
    assert raven.subjects == ("Author:Edgar Allan Poe", "Poems")
    wikidata.resolve_work_authors.assert_awaited_once_with(["Q1", "Q2"], "en")


@pytest.mark.asyncio
async def test_top_titles_fall_back_to_earlier_days() -> None:
    days: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        days.append(request.url.path.rsplit("/", 3)[-1])
        if request.url.path.endswith("/2024/05/08"):
            return httpx.Response(200, json={"items": [{"articles": [{"article": "Odes"}]}]})
        return httpx.Response(404)

    source = WikisourceSource(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        wikidata=MagicMock(),
        max_retries=0,
        sleep=_no_sleep,
        today=lambda: date(2024, 5, 10),
    )

    assert await source.fetch_top_titles("en", 80) == ["Odes"]
    assert len(days) == 2


@pytest.mark.asyncio
async def test_allpages_crawl_follows_continue_tokens() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("apcontinue") == "Б":
            return httpx.Response(200, json={"query": {"allpages": [{"title": "Война и мир"}]}})
        return httpx.Response(
            200,
            json={
                "query": {"allpages": [{"title": "Анна Каренина"}, {"title": "Главная страница"}]},
                "continue": {"apcontinue": "Б"},
            },
        )

    source = WikisourceSource(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        wikidata=MagicMock(),
        max_retries=0,
        sleep=_no_sleep,
    )

    assert source.default_limit("ru") == 3500
    assert source.default_limit("en") == 200
    assert await source.fetch_allpages_titles("ru", 800) == ["Анна Каренина", "Война и мир"]


@pytest.mark.asyncio
async def test_unexpected_payload_shapes_yield_no_titles() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "wikimedia.org":
            return httpx.Response(200, json={"items": [["not", "a", "dict"]]})
        return httpx.Response(200, json=[{"unexpected": "list"}])

    source = WikisourceSource(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        wikidata=MagicMock(),
        max_retries=0,
        sleep=_no_sleep,
        today=lambda: date(2024, 5, 10),
    )

    assert await source.fetch("en") == []
    assert await source.fetch_allpages_titles("ru", 800) == []
    assert await source.fetch_pages("en", ["The Raven"]) == []
    assert await source.author_namespace_names("en") == ["Author"]
