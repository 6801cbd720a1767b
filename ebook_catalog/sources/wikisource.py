from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any, ClassVar
from urllib.parse import unquote, urlencode

import httpx

from ebook_catalog.catalog.models import RawCandidate
from ebook_catalog.catalog.normalize import (
    has_resolved_author,
    normalize_apostrophes,
    normalize_author,
    subjects_look_academic,
    title_looks_academic,
)
from ebook_catalog.enrichment.wikidata import WikidataAuthorResolver
from ebook_catalog.shared.cache import TTLCache
from ebook_catalog.shared.concurrency import chunked
from ebook_catalog.shared.errors import UpstreamError
from ebook_catalog.sources.base import SourceFetcher

logger = logging.getLogger(__name__)

PAGEVIEWS_TOP_URL = "https://wikimedia.org/api/rest_v1/metrics/pageviews/top/{project}/all-access/{yyyy}/{mm}/{dd}"
WSEXPORT_URL = "https://ws-export.wmcloud.org/"
PAGE_BATCH_SIZE = 40
WIKITEXT_BATCH_SIZE = 20
WIKITEXT_MAX_TITLES = 40
MIN_PAGE_LENGTH = 2200
ALLPAGES_POLITE_DELAY_SECONDS = 0.15
AUTHOR_NAMESPACE_ID = "102"
SITEINFO_TTL_SECONDS = 14 * 24 * 3600.0
SITEINFO_FALLBACK_TTL_SECONDS = 6 * 3600.0

NON_CONTENT_TITLES = frozenset(
    {"main page", "main_page", "accueil", "portada", "hauptseite", "главная страница", "home", "contents"}
)
AUTHOR_CATEGORY_RE = re.compile(r"^(Author|Autor|Auteur|Автор|লেখক)\s*:\s*(.+)$", re.IGNORECASE)
AUTHOR_PARAM_RE = re.compile(r"\|\s*(author|auteur|autor|автор|লেখক)\s*=\s*([^|}\n]+)", re.IGNORECASE)
CATEGORY_PREFIX_RE = re.compile(r"^Category:", re.IGNORECASE)


def api_url(lang: str) -> str:
    return f"https://{lang}.wikisource.org/w/api.php"


def wsexport_epub_url(lang: str, title: str) -> str:
    page = re.sub(r"\s+", "_", title.strip())
    return f"{WSEXPORT_URL}?{urlencode({'lang': lang, 'page': page, 'format': 'epub'})}"


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def decode_db_key(value: str) -> str:
    return unquote((value or "").replace("_", " "))


def is_non_content_title(raw: str, *, allow_colon: bool = False) -> bool:
    title = (raw or "").strip()
    if not title:
        return True
    if not allow_colon and ":" in title:
        return True
    return title.lower() in NON_CONTENT_TITLES


def author_from_categories(categories: list[str]) -> str | None:
    for raw in categories:
        match = AUTHOR_CATEGORY_RE.match(raw.strip())
        if not match:
            continue
        name = match.group(2).strip()
        if len(name) < 3 or name.lower() == "unknown":
            continue
        return name
    return None


def _strip_wiki_markup(value: str) -> str:
    cleaned = value.replace("[[", "").replace("]]", "")
    cleaned = re.sub(r"''+", "", cleaned)
    cleaned = re.sub(r"<ref[\s\S]*?</ref>", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"<[^>]+>", "", cleaned)
    cleaned = re.sub(r"\{\{[\s\S]*?\}\}", "", cleaned)
    return cleaned.replace("_", " ").strip()


def parse_author_from_wikitext(wikitext: str, author_ns_names: list[str]) -> str | None:
    snippet = (wikitext or "")[:12000]
    if not snippet:
        return None
    names = sorted((n for n in author_ns_names if n), key=len, reverse=True) or ["Author"]
    ns_alt = "|".join(re.escape(n) for n in names)
    link_re = re.compile(rf"\[\[\s*(?:{ns_alt})\s*:\s*([^\]|#]+)", re.IGNORECASE)

    for match in AUTHOR_PARAM_RE.finditer(snippet):
        raw = match.group(2).strip()
        if not raw:
            continue
        link = link_re.search(raw)
        candidate = _strip_wiki_markup(link.group(1) if link else raw)
        if has_resolved_author(candidate):
            return normalize_author(candidate)

    link = link_re.search(snippet)
    if link:
        candidate = link.group(1).replace("_", " ").strip()
        if has_resolved_author(candidate):
            return normalize_author(candidate)
    return None


def page_categories(page: dict[str, Any]) -> list[str]:
    out: list[str] = []
    for item in _as_list(page.get("categories")):
        title = CATEGORY_PREFIX_RE.sub("", str(_as_dict(item).get("title") or "")).strip()
        if title:
            out.append(normalize_apostrophes(title))
    return out


def is_usable_page(page: dict[str, Any]) -> bool:
    title = str(page.get("title") or "").strip()
    if is_non_content_title(title, allow_colon=True):
        return False
    length = page.get("length")
    if isinstance(length, int) and 0 < length < MIN_PAGE_LENGTH:
        return False
    return not (title_looks_academic(title) or subjects_look_academic(page_categories(page)))


def _utc_today() -> date:
    return datetime.now(UTC).date()


class WikisourceSource(SourceFetcher):
    name: ClassVar[str] = "wikisource"

    def __init__(
        self,
        *,
        wikidata: WikidataAuthorResolver,
        allpages_langs: tuple[str, ...] = ("ru", "bn"),
        allpages_limit: int = 3500,
        namespace_cache: TTLCache[list[str]] | None = None,
        today: Callable[[], date] = _utc_today,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.wikidata = wikidata
        self.allpages_langs = allpages_langs
        self.allpages_limit = allpages_limit
        self.namespace_cache = namespace_cache or TTLCache(ttl_seconds=SITEINFO_TTL_SECONDS)
        self.today = today

    def default_limit(self, language: str) -> int:
        return self.allpages_limit if language in self.allpages_langs else self.limit

    async def _fetch(self, language: str, limit: int) -> list[RawCandidate]:
        if language in self.allpages_langs:
            # Top pageviews yields too few works on smaller wikis.
            titles = await self.fetch_allpages_titles(language, min(6500, max(800, limit * 8)))
        else:
            titles = await self.fetch_top_titles(language, min(400, max(80, limit * 5)))
        return await self.candidates_from_titles(language, titles, limit)

    async def fetch_top_titles(self, lang: str, limit: int) -> list[str]:
        project = f"{lang}.wikisource.org"
        # The current UTC day is usually not published yet.
        for days_ago in (1, 2, 3):
            day = self.today() - timedelta(days=days_ago)
            url = PAGEVIEWS_TOP_URL.format(
                project=project, yyyy=f"{day.year:04d}", mm=f"{day.month:02d}", dd=f"{day.day:02d}"
            )
            try:
                payload = await self._get_json(url, allow_status=(404,), max_retries=1)
            except (UpstreamError, httpx.HTTPError, ValueError) as exc:
                logger.debug("wikisource pageviews for %s failed: %s", day, exc)
                continue
            items = _as_list(_as_dict(payload).get("items"))
            articles = _as_list(_as_dict(items[0]).get("articles")) if items else []
            out: list[str] = []
            for article in articles:
                title = decode_db_key(str(_as_dict(article).get("article") or ""))
                if is_non_content_title(title):
                    continue
                out.append(title)
                if len(out) >= limit:
                    break
            if out:
                return out
        return []

    async def fetch_allpages_titles(self, lang: str, limit: int) -> list[str]:
        out: list[str] = []
        apcontinue: str | None = None
        max_loops = min(80, max(4, math.ceil(limit / 450) + 4))

        for _ in range(max_loops):
            if len(out) >= limit:
                break
            params: dict[str, Any] = {
                "action": "query",
                "format": "json",
                "list": "allpages",
                "apnamespace": "0",
                "apfilterredir": "nonredirects",
                "aplimit": "500",
            }
            if apcontinue:
                params["apcontinue"] = apcontinue
            payload = _as_dict(await self._get_json(api_url(lang), params=params))
            for page in _as_list(_as_dict(payload.get("query")).get("allpages")):
                title = str(_as_dict(page).get("title") or "").strip()
                if is_non_content_title(title, allow_colon=True):
                    continue
                out.append(title)
                if len(out) >= limit:
                    break

            apcontinue = _as_dict(payload.get("continue")).get("apcontinue")
            if not isinstance(apcontinue, str) or not apcontinue:
                break
            await self.sleep(ALLPAGES_POLITE_DELAY_SECONDS)
        return out

    async def fetch_pages(self, lang: str, titles: list[str]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for batch in chunked(titles, PAGE_BATCH_SIZE):
            params = {
                "action": "query",
                "format": "json",
                "redirects": "1",
                "prop": "info|pageimages|categories|pageprops",
                "inprop": "url",
                "piprop": "thumbnail",
                "pithumbsize": "400",
                "cllimit": "20",
                "ppprop": "wikibase_item",
                "titles": "|".join(batch),
            }
            try:
                payload = await self._get_json(api_url(lang), params=params)
            except (UpstreamError, httpx.HTTPError, ValueError) as exc:
                logger.warning("wikisource page batch failed (%d titles): %s", len(batch), exc)
                continue
            pages = _as_dict(_as_dict(_as_dict(payload).get("query")).get("pages"))
            for page in pages.values():
                if isinstance(page, dict) and "missing" not in page:
                    out.append(page)
        return out

    async def author_namespace_names(self, lang: str) -> list[str]:
        cached = self.namespace_cache.get(lang)
        if cached is not None:
            return cached
        params = {"action": "query", "format": "json", "meta": "siteinfo", "siprop": "namespaces|namespacealiases"}
        try:
            payload = await self._get_json(api_url(lang), params=params, max_retries=1, timeout_seconds=3.5)
        except (UpstreamError, httpx.HTTPError, ValueError) as exc:
            logger.debug("wikisource siteinfo for %s failed: %s", lang, exc)
            fallback = ["Author"]
            self.namespace_cache.set(lang, fallback, ttl=SITEINFO_FALLBACK_TTL_SECONDS)
            return fallback

        query = _as_dict(_as_dict(payload).get("query"))
        ns = _as_dict(_as_dict(query.get("namespaces")).get(AUTHOR_NAMESPACE_ID))
        aliases = [
            str(alias.get("*")).strip()
            for alias in map(_as_dict, _as_list(query.get("namespacealiases")))
            if str(alias.get("id")) == AUTHOR_NAMESPACE_ID and str(alias.get("*") or "").strip()
        ]
        names = [str(v).strip() for v in (ns.get("*"), ns.get("canonical"), "Author", *aliases) if v]
        names = list(dict.fromkeys(n for n in names if n))
        self.namespace_cache.set(lang, names, ttl=SITEINFO_TTL_SECONDS)
        return names

    async def wikitext_authors(self, lang: str, titles: list[str]) -> dict[str, str]:
        unique = list(dict.fromkeys(t.strip() for t in titles if t.strip()))
        if not unique:
            return {}
        ns_names = await self.author_namespace_names(lang)
        out: dict[str, str] = {}
        for batch in chunked(unique, WIKITEXT_BATCH_SIZE):
            params = {
                "action": "query",
                "format": "json",
                "formatversion": "2",
                "redirects": "1",
                "prop": "revisions",
                "rvprop": "content",
                "rvslots": "main",
                "titles": "|".join(batch),
            }
            try:
                payload = await self._get_json(api_url(lang), params=params, max_retries=1)
            except (UpstreamError, httpx.HTTPError, ValueError) as exc:
                logger.debug("wikisource wikitext batch failed: %s", exc)
                continue
            for page in map(_as_dict, _as_list(_as_dict(_as_dict(payload).get("query")).get("pages"))):
                title = str(page.get("title") or "").strip()
                revisions = _as_list(page.get("revisions"))
                if not title or not revisions:
                    continue
                content = _as_dict(_as_dict(_as_dict(revisions[0]).get("slots")).get("main")).get("content")
                author = parse_author_from_wikitext(content if isinstance(content, str) else "", ns_names)
                if author:
                    out[title] = author
        return out

    async def candidates_from_titles(self, lang: str, titles: list[str], limit: int) -> list[RawCandidate]:
        unique_titles = list(dict.fromkeys(t.strip() for t in titles if t and t.strip()))
        if not unique_titles:
            return []
        pages = [page for page in await self.fetch_pages(lang, unique_titles) if is_usable_page(page)]

        qids = [
            str(_as_dict(page.get("pageprops")).get("wikibase_item") or "").strip()
            for page in pages
        ]
        by_qid = await self.wikidata.resolve_work_authors([q for q in qids if q], lang)

        need_wikitext = [
            str(page["title"]).strip()
            for page, qid in zip(pages, qids, strict=True)
            if not by_qid.get(qid) and not author_from_categories(page_categories(page))
        ]
        by_wikitext = await self.wikitext_authors(lang, need_wikitext[:WIKITEXT_MAX_TITLES])

        out: list[RawCandidate] = []
        seen: set[str] = set()
        for page, qid in zip(pages, qids, strict=True):
            if len(out) >= limit:
                break
            title = str(page["title"]).strip()
            if title in seen:
                continue
            seen.add(title)
            categories = page_categories(page)
            author = author_from_categories(categories) or by_qid.get(qid) or by_wikitext.get(title) or ""
            page_id = page.get("pageid")
            out.append(
                RawCandidate(
                    title=title,
                    author=author,
                    language=lang,
                    source="wikisource",
                    download_url=wsexport_epub_url(lang, title),
                    cover_url=_as_dict(page.get("thumbnail")).get("source") or None,
                    subjects=tuple(categories),
                    source_id=f"wikisource:{lang}:{page_id}" if page_id else f"wikisource:{lang}:{title.lower()}",
                )
            )
        return out
