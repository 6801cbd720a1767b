from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from ebook_catalog.shared.cache import TTLCache
from ebook_catalog.shared.concurrency import chunked
from ebook_catalog.shared.errors import UpstreamError
from ebook_catalog.shared.http import http_request_with_retry

logger = logging.getLogger(__name__)

WIKIDATA_API_URL = "https://www.wikidata.org/w/api.php"
WIKIDATA_BATCH_SIZE = 45
QID_RE = re.compile(r"^Q\d+$")

AUTHOR_STRING_PROP = "P2093"
AUTHOR_ENTITY_PROPS = ("P50", "P170")
EDITION_OF_PROP = "P629"


def is_valid_qid(value: object) -> bool:
    return isinstance(value, str) and bool(QID_RE.match(value.strip()))


def first_claim_entity_id(entity: dict[str, Any], prop: str) -> str | None:
    for claim in (entity.get("claims") or {}).get(prop) or []:
        value = ((claim.get("mainsnak") or {}).get("datavalue") or {}).get("value")
        if isinstance(value, dict) and is_valid_qid(value.get("id")):
            return str(value["id"]).strip()
    return None


def first_claim_string(entity: dict[str, Any], prop: str) -> str | None:
    for claim in (entity.get("claims") or {}).get(prop) or []:
        value = ((claim.get("mainsnak") or {}).get("datavalue") or {}).get("value")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def author_signals(entity: dict[str, Any]) -> tuple[str | None, str | None, str | None]:
    """Return ``(author_string, author_entity, edition_of)`` for a work entity."""
    author_entity = None
    for prop in AUTHOR_ENTITY_PROPS:
        author_entity = first_claim_entity_id(entity, prop)
        if author_entity:
            break
    return (
        first_claim_string(entity, AUTHOR_STRING_PROP),
        author_entity,
        first_claim_entity_id(entity, EDITION_OF_PROP),
    )


def pick_label(labels: dict[str, Any] | None, preferred: list[str]) -> str | None:
    if not isinstance(labels, dict):
        return None
    for lang in preferred:
        value = (labels.get(lang) or {}).get("value")
        if isinstance(value, str) and value.strip():
            return value.strip()
    for item in labels.values():
        value = item.get("value") if isinstance(item, dict) else None
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class WikidataAuthorResolver:
    """Resolve work QIDs to a display author name.

    Order per work: P2093 author string, P50/P170 author entity label, then one
    hop through P629 (edition of) repeating the same two checks.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        cache: TTLCache[str | None],
        user_agent: str = "ebook-catalog/0.1 (wikidata-author-enrichment)",
        timeout_seconds: float = 3.5,
        positive_ttl_seconds: float = 30 * 24 * 3600.0,
        negative_ttl_seconds: float = 6 * 3600.0,
        max_retries: int = 1,
    ) -> None:
        self.client = client
        self.cache = cache
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self.positive_ttl_seconds = positive_ttl_seconds
        self.negative_ttl_seconds = negative_ttl_seconds
        self.max_retries = max_retries

    def _remember(self, lang: str, qid: str, author: str | None) -> None:
        ttl = self.positive_ttl_seconds if author else self.negative_ttl_seconds
        self.cache.set((lang, qid), author, ttl=ttl)

    async def _fetch_entities(
        self, ids: list[str], props: str, languages: str | None = None
    ) -> dict[str, Any]:
        params = {
            "action": "wbgetentities",
            "format": "json",
            "ids": "|".join(ids),
            "props": props,
            "languagefallback": "1",
        }
        if languages:
            params["languages"] = languages
        try:
            response = await http_request_with_retry(
                self.client,
                "GET",
                WIKIDATA_API_URL,
                params=params,
                headers={"Accept": "application/json", "User-Agent": self.user_agent},
                timeout=self.timeout_seconds,
                max_retries=self.max_retries,
                error_label="Wikidata wbgetentities",
            )
            payload = response.json()
        except (UpstreamError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Wikidata lookup failed for %d ids: %s", len(ids), exc)
            return {}
        entities = payload.get("entities") if isinstance(payload, dict) else None
        return entities if isinstance(entities, dict) else {}

    async def _labels(self, ids: set[str], lang: str) -> dict[str, str]:
        out: dict[str, str] = {}
        for batch in chunked(sorted(ids), WIKIDATA_BATCH_SIZE):
            entities = await self._fetch_entities(list(batch), "labels", f"{lang}|en")
            for qid in batch:
                label = pick_label((entities.get(qid) or {}).get("labels"), [lang, "en"])
                if label:
                    out[qid] = label
        return out

    async def _resolve_direct(
        self, ids: list[str], lang: str
    ) -> tuple[dict[str, str], dict[str, str], set[str]]:
        """Return (resolved authors, qid -> edition_of, fetched ids)."""
        resolved: dict[str, str] = {}
        to_author: dict[str, str] = {}
        to_edition: dict[str, str] = {}
        fetched: set[str] = set()

        for batch in chunked(ids, WIKIDATA_BATCH_SIZE):
            entities = await self._fetch_entities(list(batch), "claims")
            for qid in batch:
                entity = entities.get(qid)
                if not isinstance(entity, dict):
                    continue
                fetched.add(qid)
                author_string, author_entity, edition_of = author_signals(entity)
                if author_string:
                    resolved[qid] = author_string
                elif author_entity:
                    to_author[qid] = author_entity
                elif edition_of:
                    to_edition[qid] = edition_of

        labels = await self._labels(set(to_author.values()), lang)
        for qid, author_qid in to_author.items():
            if author_qid in labels:
                resolved[qid] = labels[author_qid]
        return resolved, to_edition, fetched

    async def resolve_work_authors(self, work_qids: list[str], lang: str) -> dict[str, str]:
        unique = list(dict.fromkeys(q.strip() for q in work_qids if is_valid_qid(q)))
        out: dict[str, str] = {}
        to_fetch: list[str] = []
        for qid in unique:
            # Author labels are language specific.
            if (lang, qid) in self.cache:
                cached = self.cache.get((lang, qid))
                if cached:
                    out[qid] = cached
            else:
                to_fetch.append(qid)
        if not to_fetch:
            return out

        resolved, to_edition, fetched = await self._resolve_direct(to_fetch, lang)

        if to_edition:
            edition_ids = list(dict.fromkeys(to_edition.values()))
            via_edition, _, _ = await self._resolve_direct(edition_ids, lang)
            for qid, edition_qid in to_edition.items():
                if qid not in resolved and edition_qid in via_edition:
                    resolved[qid] = via_edition[edition_qid]

        for qid in fetched:
            author = resolved.get(qid)
            self._remember(lang, qid, author)
            if author:
                out[qid] = author
        return out
