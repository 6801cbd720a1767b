from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress

from ebook_catalog.sync.service import SyncOrchestrator, SyncResult

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Periodically sync each configured language through the orchestrator."""

    def __init__(
        self,
        *,
        orchestrator: SyncOrchestrator,
        languages: Sequence[str],
        interval_seconds: float,
        run_immediately: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.orchestrator = orchestrator
        self.languages = tuple(languages)
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self.sleep = sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> dict[str, SyncResult | None]:
        """Sync every language in order; a failure is logged and the next language still runs."""
        results: dict[str, SyncResult | None] = {}
        for lang in self.languages:
            try:
                results[lang] = await self.orchestrator.sync(lang)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Scheduled sync for %s failed: %s", lang, exc)
                results[lang] = None
        return results

    async def _loop(self) -> None:
        if not self.run_immediately:
            await self.sleep(self.interval_seconds)
        while True:
            await self.run_once()
            await self.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        logger.info(
            "Sync scheduler started for %s every %.0fs", ", ".join(self.languages), self.interval_seconds
        )
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Sync scheduler stopped")

    async def run_forever(self) -> None:
        self.start()
        assert self._task is not None
        await self._task
