from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from ebook_catalog.sync.scheduler import SyncScheduler
from ebook_catalog.sync.service import SyncResult


@pytest.mark.asyncio
async def test_run_once_continues_after_a_failed_language() -> None:
    orchestrator = MagicMock()
    orchestrator.sync = AsyncMock(side_effect=[RuntimeError("boom"), SyncResult(language="fr", upserted=3)])
    scheduler = SyncScheduler(orchestrator=orchestrator, languages=["en", "fr"], interval_seconds=60)

    results = await scheduler.run_once()

    assert results["en"] is None
    assert results["fr"] == SyncResult(language="fr", upserted=3)
    assert [call.args[0] for call in orchestrator.sync.await_args_list] == ["en", "fr"]


@pytest.mark.asyncio
async def test_start_runs_immediately_then_sleeps_and_stop_cancels() -> None:
    orchestrator = MagicMock()
    orchestrator.sync = AsyncMock(return_value=SyncResult(language="en", upserted=0))
    slept: list[float] = []
    parked = asyncio.Event()

    async def fake_sleep(seconds: float) -> None:
        slept.append(seconds)
        parked.set()
        await asyncio.Event().wait()

    scheduler = SyncScheduler(orchestrator=orchestrator, languages=["en"], interval_seconds=90, sleep=fake_sleep)
    scheduler.start()
    scheduler.start()
    await asyncio.wait_for(parked.wait(), timeout=1)

    assert scheduler.running is True
    assert orchestrator.sync.await_count == 1
    assert slept == [90]

    await scheduler.stop()
    assert scheduler.running is False
    await scheduler.stop()


@pytest.mark.asyncio
async def test_delayed_start_waits_before_first_run() -> None:
    orchestrator = MagicMock()
    orchestrator.sync = AsyncMock()
    parked = asyncio.Event()

    async def fake_sleep(seconds: float) -> None:
        parked.set()
        await asyncio.Event().wait()

    scheduler = SyncScheduler(
        orchestrator=orchestrator,
        languages=["en"],
        interval_seconds=30,
        run_immediately=False,
        sleep=fake_sleep,
    )
    scheduler.start()
    await asyncio.wait_for(parked.wait(), timeout=1)

    assert orchestrator.sync.await_count == 0
    await scheduler.stop()
