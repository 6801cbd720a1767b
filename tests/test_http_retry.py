from __future__ import annotations

import asyncio

import httpx
import pytest

from ebook_catalog.shared.concurrency import chunked, map_with_concurrency
from ebook_catalog.shared.errors import UpstreamError
from ebook_catalog.shared.http import backoff_delay, http_request_with_retry


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _client(handler) -> httpx.AsyncClient:  # type: ignore[no-untyped-def]
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_backoff_delay_doubles_and_caps() -> None:
    delays = [
        backoff_delay(attempt, backoff_start_seconds=0.8, backoff_cap_seconds=8.0) for attempt in range(6)
    ]
    assert delays == [0.8, 1.6, 3.2, 6.4, 8.0, 8.0]


def test_backoff_delay_adds_bounded_jitter() -> None:
    delay = backoff_delay(
        0, backoff_start_seconds=0.8, backoff_cap_seconds=8.0, jitter_seconds=0.2, rng=lambda: 0.5
    )
    assert delay == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_retry_after_header_is_honoured() -> None:
    responses = iter([httpx.Response(429, headers={"Retry-After": "2"}), httpx.Response(200, json={"ok": True})])
    sleep = RecordingSleep()

    async with _client(lambda request: next(responses)) as client:
        response = await http_request_with_retry(client, "GET", "https://gutendex.example/books", sleep=sleep)

    assert response.json() == {"ok": True}
    assert sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_server_errors_back_off_then_raise() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503)

    sleep = RecordingSleep()
    async with _client(handler) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await http_request_with_retry(
                client, "GET", "https://example.org", max_retries=3, jitter_seconds=0.0, sleep=sleep
            )

    assert calls == 4
    assert sleep.delays == [0.8, 1.6, 3.2]


@pytest.mark.asyncio
async def test_transport_errors_become_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    sleep = RecordingSleep()
    async with _client(handler) as client:
        with pytest.raises(UpstreamError, match="after 2 attempts"):
            await http_request_with_retry(client, "GET", "https://example.org", max_retries=1, sleep=sleep)

    assert len(sleep.delays) == 1


@pytest.mark.asyncio
async def test_non_retryable_status_raises_immediately() -> None:
    sleep = RecordingSleep()
    async with _client(lambda request: httpx.Response(400)) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await http_request_with_retry(client, "GET", "https://example.org", sleep=sleep)

    assert sleep.delays == []


@pytest.mark.asyncio
async def test_allowed_status_is_returned() -> None:
    async with _client(lambda request: httpx.Response(404)) as client:
        response = await http_request_with_retry(client, "GET", "https://example.org", allow_status=(404,))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_map_with_concurrency_bounds_parallelism_and_keeps_order() -> None:
    active = 0
    peak = 0

    async def work(value: int) -> int:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0)
        active -= 1
        return value * 2

    result = await map_with_concurrency(list(range(10)), 3, work)

    assert result == [v * 2 for v in range(10)]
    assert peak <= 3


def test_chunked_splits_sequences() -> None:
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunked([], 400) == []
