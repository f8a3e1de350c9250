"""
resilience/rate_limiter.py — Token-bucket Rate Limiter

Non-blocking limiter for one external target. acquire() answers "may I call
right now?" and never waits: False means rejected now, not queued.

Checks, in order:
  1. in-flight calls < max_concurrent
  2. at least min_time_ms since the last admitted call
  3. refill: whole elapsed reservoir_refresh_interval_ms periods each add
     reservoir_refresh_amount tokens, capped at reservoir
  4. at least one token left

An admitted call consumes one token and one concurrency slot; release()
frees the slot. execute() wraps acquire/release and raises RateLimitedError
on rejection.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from exceptions import RateLimitedError
from observability.logger import get_logger
from observability.metrics import metrics

log = get_logger(__name__)

T = TypeVar("T")


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class RateLimiter:
    def __init__(
        self,
        name: str = "default",
        max_concurrent: int = 10,
        min_time_ms: int = 1000,
        reservoir: int = 100,
        reservoir_refresh_amount: int = 10,
        reservoir_refresh_interval_ms: int = 60000,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        self.name = name
        self.max_concurrent = max_concurrent
        self.min_time_ms = min_time_ms
        self.reservoir = reservoir
        self.reservoir_refresh_amount = reservoir_refresh_amount
        self.reservoir_refresh_interval_ms = reservoir_refresh_interval_ms
        self._clock = clock
        self._lock = asyncio.Lock()
        self.reset()

    async def acquire(self) -> bool:
        async with self._lock:
            if self.concurrent >= self.max_concurrent:
                return self._reject("concurrency")

            now = self._clock()
            if self.last_request_time is not None and now - self.last_request_time < self.min_time_ms:
                return self._reject("min_time")

            self._refill(now)
            if self.tokens < 1:
                return self._reject("reservoir_empty")

            self.tokens -= 1
            self.concurrent += 1
            self.last_request_time = now
            return True

    def release(self) -> None:
        self.concurrent = max(0, self.concurrent - 1)

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        if not await self.acquire():
            raise RateLimitedError(self.name)
        try:
            return await fn()
        finally:
            self.release()

    def get_metrics(self) -> dict[str, Any]:
        return {
            "tokens": self.tokens,
            "concurrent_requests": self.concurrent,
            "last_refill": self.last_refill,
            "last_request_time": self.last_request_time,
        }

    def reset(self) -> None:
        self.tokens = self.reservoir
        self.last_refill = self._clock()
        self.concurrent = 0
        self.last_request_time: Optional[float] = None

    # ── Internals ─────────────────────────────────────────────────────────────

    def _refill(self, now: float) -> None:
        intervals = int((now - self.last_refill) // self.reservoir_refresh_interval_ms)
        if intervals > 0:
            self.tokens = min(self.reservoir, self.tokens + intervals * self.reservoir_refresh_amount)
            self.last_refill = now

    def _reject(self, reason: str) -> bool:
        metrics.incr("limiter.reject", target=self.name, reason=reason)
        log.debug("limiter.rejected", target=self.name, reason=reason)
        return False

    def __repr__(self) -> str:
        return f"<RateLimiter {self.name} tokens={self.tokens} in_flight={self.concurrent}>"
