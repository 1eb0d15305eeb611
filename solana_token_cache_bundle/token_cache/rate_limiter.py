# solana_token_cache_bundle/token_cache/rate_limiter.py
"""
Per-upstream request scheduler.

One ReservoirLimiter per API. Each bounds:
  - steady-state rate: `reservoir` permits per `window_seconds`, refilled to
    full at every window boundary (callers past the limit wait, never fail)
  - concurrency: at most `max_concurrent` scheduled tasks in flight
  - explicit 429s: `mark_down(seconds)` holds every new permit until the
    Retry-After has elapsed

Retrying the rate-limited call is the caller's job: clients raise
RateLimitedError and wrap their request in a tenacity @retry that waits
`wait_retry_after`.

Usage:
    limiter = ReservoirLimiter("dexscreener", reservoir=50, max_concurrent=1)
    body = await limiter.schedule(lambda: fetch_json(session, url))
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger("TokenCache")

T = TypeVar("T")

DEFAULT_RETRY_AFTER = 2.0
MAX_RETRY_AFTER = 300.0


class RateLimitedError(Exception):
    """Upstream answered 429; `retry_after` is how long to wait before trying again."""

    def __init__(self, api: str, retry_after: float = DEFAULT_RETRY_AFTER):
        self.api = api
        self.retry_after = max(0.0, min(float(retry_after), MAX_RETRY_AFTER))
        super().__init__(f"{api} rate limited; retry after {self.retry_after:.1f}s")


def wait_retry_after(retry_state: Any) -> float:
    """tenacity `wait=` callable: honour the Retry-After carried by RateLimitedError."""
    outcome = retry_state.outcome
    exc = outcome.exception() if outcome is not None else None
    if isinstance(exc, RateLimitedError):
        return exc.retry_after
    return DEFAULT_RETRY_AFTER


class ReservoirLimiter:
    def __init__(
        self,
        name: str,
        reservoir: int,
        max_concurrent: int,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self._reservoir = max(1, int(reservoir))
        self._max_concurrent = max(1, int(max_concurrent))
        self._window = max(0.001, float(window_seconds))
        self._clock = clock
        self._sleep = sleep

        self._permits = self._reservoir
        self._window_start = clock()
        self._down_until = 0.0
        self._reserve_lock = asyncio.Lock()
        self._slots = asyncio.Semaphore(self._max_concurrent)

        # Telemetry counters
        self.requests_total = 0
        self.waits_total = 0
        self._429_total = 0
        self._in_flight = 0

    def _refill(self, now: float) -> None:
        elapsed = now - self._window_start
        if elapsed >= self._window:
            # align to window boundaries so bursts can't straddle two refills
            self._window_start += (elapsed // self._window) * self._window
            self._permits = self._reservoir

    async def _take_permit(self) -> None:
        # Held across the sleep: waiters are served in arrival order.
        async with self._reserve_lock:
            while True:
                now = self._clock()
                if now < self._down_until:
                    wait = self._down_until - now
                else:
                    self._refill(now)
                    if self._permits > 0:
                        self._permits -= 1
                        self.requests_total += 1
                        return
                    wait = (self._window_start + self._window) - now
                self.waits_total += 1
                logger.debug("%s limiter waiting %.2fs for a permit", self.name, wait)
                await self._sleep(max(0.0, wait))

    async def schedule(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run `task()` once a concurrency slot and a reservoir permit are available."""
        async with self._slots:
            await self._take_permit()
            self._in_flight += 1
            try:
                return await task()
            finally:
                self._in_flight -= 1

    def mark_down(self, seconds: float) -> None:
        """Cooperative backoff: no new permits until `seconds` from now."""
        prev = self._down_until
        self._down_until = max(self._down_until, self._clock() + max(0.0, float(seconds)))
        self._429_total += 1
        logger.warning("%s limiter: marked down for %.1f s (prev_down_until=%.3f)", self.name, seconds, prev)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def stats(self) -> Dict[str, Optional[float]]:
        return {
            "requests_total": int(self.requests_total),
            "waits_total": int(self.waits_total),
            "429_total": int(self._429_total),
            "reservoir": int(self._reservoir),
            "permits_left": int(self._permits),
            "max_concurrent": int(self._max_concurrent),
            "in_flight": int(self._in_flight),
            "down_until_monotonic": float(self._down_until),
        }
