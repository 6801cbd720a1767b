from __future__ import annotations

import logging
import time
from collections.abc import Callable

import httpx

logger = logging.getLogger(__name__)

BLOCK_MARKERS: tuple[str, ...] = ("cloudflare", "just a moment")


def looks_blocked(response: httpx.Response) -> bool:
    """True when a response that should be JSON/XML is an HTML or challenge page."""
    content_type = response.headers.get("content-type", "").lower()
    if "text/html" in content_type:
        return True
    head = response.text.lstrip()[:240].lower()
    if head.startswith("<!doctype") or head.startswith("<html"):
        return True
    return any(marker in head for marker in BLOCK_MARKERS)


class SourceCircuitBreaker:
    def __init__(
        self,
        name: str,
        *,
        cooldown_seconds: float = 3600.0,
        warn_throttle_seconds: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.cooldown_seconds = cooldown_seconds
        self.warn_throttle_seconds = warn_throttle_seconds
        self._clock = clock
        self._open_until = 0.0
        self._last_warn_at: float | None = None

    def is_open(self) -> bool:
        return self._clock() < self._open_until

    def remaining_seconds(self) -> float:
        return max(0.0, self._open_until - self._clock())

    def trip(self, reason: str) -> None:
        now = self._clock()
        self._open_until = now + self.cooldown_seconds
        if self._last_warn_at is None or now - self._last_warn_at >= self.warn_throttle_seconds:
            self._last_warn_at = now
            logger.warning(
                "%s unavailable (%s); backing off for %.0fs",
                self.name,
                reason,
                self.cooldown_seconds,
            )
        else:
            logger.debug("%s still unavailable (%s)", self.name, reason)

    def reset(self) -> None:
        self._open_until = 0.0
