from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from ebook_catalog.shared.errors import UpstreamError

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

DEFAULT_RETRY_STATUS: tuple[int, ...] = (429, 500, 502, 503, 504)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def backoff_delay(
    attempt: int,
    *,
    backoff_start_seconds: float,
    backoff_cap_seconds: float,
    jitter_seconds: float = 0.0,
    rng: Callable[[], float] = random.random,
) -> float:
    """Exponential delay for the given zero-based retry attempt, capped, plus jitter."""
    base = min(backoff_cap_seconds, max(backoff_start_seconds, 0.0) * (2**attempt))
    if jitter_seconds > 0:
        base += rng() * jitter_seconds
    return base


async def http_request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int = 3,
    backoff_start_seconds: float = 0.8,
    backoff_cap_seconds: float = 8.0,
    jitter_seconds: float = 0.2,
    retry_on_status: tuple[int, ...] = DEFAULT_RETRY_STATUS,
    allow_status: tuple[int, ...] = (),
    error_label: str = "HTTP request",
    sleep: SleepFn = asyncio.sleep,
    rng: Callable[[], float] = random.random,
    **request_kwargs: Any,
) -> httpx.Response:
    """Async HTTP request with exponential backoff retry.

    ``max_retries`` counts retries after the first attempt. A ``Retry-After``
    header (seconds) replaces the computed backoff for that wait. Statuses in
    ``allow_status`` are returned to the caller instead of raising, which lets
    paginated sources treat e.g. 404 as "past the last page".

    Raises:
        UpstreamError: transport errors persisted through every attempt.
        httpx.HTTPStatusError: a non-retryable error status, or a retryable
            one that was still returned on the final attempt.
    """
    attempts = max(0, max_retries) + 1

    for attempt in range(attempts):
        is_last = attempt >= attempts - 1
        try:
            response = await client.request(method, url, **request_kwargs)
        except httpx.HTTPError as exc:
            if is_last:
                raise UpstreamError(
                    f"{error_label} failed after {attempts} attempts ({exc.__class__.__name__})"
                ) from exc
            delay = backoff_delay(
                attempt,
                backoff_start_seconds=backoff_start_seconds,
                backoff_cap_seconds=backoff_cap_seconds,
                jitter_seconds=jitter_seconds,
                rng=rng,
            )
            logger.debug("%s transport error (%s); retrying in %.2fs", error_label, exc.__class__.__name__, delay)
            await sleep(delay)
            continue

        if response.status_code in allow_status:
            return response

        if response.status_code in retry_on_status:
            if is_last:
                response.raise_for_status()
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            if retry_after is not None:
                delay = retry_after
            else:
                delay = backoff_delay(
                    attempt,
                    backoff_start_seconds=backoff_start_seconds,
                    backoff_cap_seconds=backoff_cap_seconds,
                    jitter_seconds=jitter_seconds,
                    rng=rng,
                )
            logger.debug("%s got HTTP %s; retrying in %.2fs", error_label, response.status_code, delay)
            await sleep(delay)
            continue

        response.raise_for_status()
        return response

    raise UpstreamError(f"{error_label} failed before receiving a response body")
