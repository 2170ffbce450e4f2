"""Per-sender-domain message counter with a fixed reset window."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_WINDOW_SECONDS = 60


class RateLimitDecision(BaseModel):
    allowed: bool
    count: int
    limit: int
    domain: str


class DomainRateLimiter:
    """Counts accepted messages per domain within the current window.

    All counters are cleared together once ``window_seconds`` have passed
    since the window opened. A rejected message does not increment its
    domain's counter, so exactly ``limit`` messages pass per window.
    """

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {}
        self._window_started = clock()

    def check(self, domain: str) -> RateLimitDecision:
        """Record one message from ``domain`` if it is within the limit."""
        domain = domain.lower()
        with self._lock:
            self._roll_window()
            attempted = self._counts.get(domain, 0) + 1
            allowed = attempted <= self.limit
            if allowed:
                self._counts[domain] = attempted
            else:
                logger.warning(
                    "Rate limit exceeded for domain %s (%d/%d)", domain, attempted, self.limit
                )
        return RateLimitDecision(allowed=allowed, count=attempted, limit=self.limit, domain=domain)

    def count(self, domain: str) -> int:
        with self._lock:
            self._roll_window()
            return self._counts.get(domain.lower(), 0)

    def reset_all(self) -> None:
        with self._lock:
            self._counts.clear()
            self._window_started = self._clock()

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_started >= self.window_seconds:
            self._counts.clear()
            self._window_started = now
