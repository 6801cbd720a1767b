from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, ClassVar, Literal

import httpx

from ebook_catalog.catalog.models import RawCandidate
from ebook_catalog.shared.errors import SourceBlockedError, SourceUnavailableError, UpstreamError
from ebook_catalog.shared.http import DEFAULT_RETRY_STATUS, http_request_with_retry
from ebook_catalog.sources.circuit import SourceCircuitBreaker, looks_blocked

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]
Expect = Literal["json", "xml", "any"]


class SourceFetcher:
    """Shared plumbing for one upstream catalog.

    Subclasses implement ``_fetch``. ``fetch`` guards it with the circuit
    breaker: an open circuit yields ``[]`` without touching the network, and a
    block response (a status in ``block_status`` or a challenge page) trips the
    circuit and also yields ``[]``. Any other failure of the whole source
    surfaces as ``SourceUnavailableError``.
    """

    name: ClassVar[str] = "source"
    languages: ClassVar[frozenset[str] | None] = None
    block_status: ClassVar[tuple[int, ...]] = (403,)

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        breaker: SourceCircuitBreaker | None = None,
        limit: int = 200,
        user_agent: str = "ebook-catalog/0.1 (catalog-sync)",
        timeout_seconds: float = 6.0,
        max_retries: int = 3,
        backoff_start_seconds: float = 0.8,
        backoff_cap_seconds: float = 8.0,
        jitter_seconds: float = 0.2,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.client = client
        self.breaker = breaker or SourceCircuitBreaker(self.name)
        self.limit = limit
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_start_seconds = backoff_start_seconds
        self.backoff_cap_seconds = backoff_cap_seconds
        self.jitter_seconds = jitter_seconds
        self.sleep = sleep

    def default_limit(self, language: str) -> int:
        return self.limit

    def applies_to(self, language: str) -> bool:
        if self.limit <= 0:
            return False
        return self.languages is None or language in self.languages

    async def fetch(self, language: str, limit: int | None = None) -> list[RawCandidate]:
        if not self.applies_to(language):
            return []
        if self.breaker.is_open():
            logger.debug("%s circuit open for %.0fs more; skipping", self.name, self.breaker.remaining_seconds())
            return []

        use_limit = self.default_limit(language) if limit is None else limit
        if use_limit <= 0:
            return []
        try:
            candidates = await self._fetch(language, use_limit)
        except SourceBlockedError as exc:
            self.breaker.trip(exc.reason)
            return []
        except (UpstreamError, httpx.HTTPError, ValueError) as exc:
            raise SourceUnavailableError(self.name, str(exc) or exc.__class__.__name__) from exc

        logger.info("%s fetched %d candidates for %s", self.name, len(candidates), language)
        return candidates[:use_limit]

    async def _fetch(self, language: str, limit: int) -> list[RawCandidate]:
        raise NotImplementedError

    def _headers(self, accept: str) -> dict[str, str]:
        return {"Accept": accept, "User-Agent": self.user_agent}

    async def _get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        expect: Expect = "json",
        accept: str = "application/json",
        headers: dict[str, str] | None = None,
        allow_status: tuple[int, ...] = (),
        max_retries: int | None = None,
        timeout_seconds: float | None = None,
    ) -> httpx.Response:
        request_headers = self._headers(accept)
        if headers:
            request_headers.update(headers)
        try:
            response = await http_request_with_retry(
                self.client,
                "GET",
                url,
                params=params,
                headers=request_headers,
                timeout=timeout_seconds or self.timeout_seconds,
                max_retries=self.max_retries if max_retries is None else max_retries,
                backoff_start_seconds=self.backoff_start_seconds,
                backoff_cap_seconds=self.backoff_cap_seconds,
                jitter_seconds=self.jitter_seconds,
                retry_on_status=DEFAULT_RETRY_STATUS,
                allow_status=allow_status,
                error_label=f"{self.name} GET",
                sleep=self.sleep,
            )
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in self.block_status:
                raise SourceBlockedError(self.name, exc.response.status_code) from exc
            raise

        if response.status_code in allow_status:
            return response
        if expect != "any" and looks_blocked(response):
            raise SourceBlockedError(self.name, 403)
        return response

    async def _get_json(self, url: str, **kwargs: Any) -> Any:
        response = await self._get(url, expect="json", **kwargs)
        return response.json()
