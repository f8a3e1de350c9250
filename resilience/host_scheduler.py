"""
resilience/host_scheduler.py — Per-host Scheduler

Queues outbound work per destination host so each host gets its own
minimum spacing between call starts and its own concurrency cap. A slow
provider fills only its own lane and cannot starve the others.

Unlike RateLimiter this one waits: schedule() suspends until the lane
admits the call.

Limits come from a resolver (normally Settings.host_limits_for), so
per-host overrides in config.yaml or RATE_MIN_MS_<HOST_KEY> /
RATE_MAX_CONC_<HOST_KEY> take effect the first time a host is seen.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from observability.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MIN_TIME_MS = 200
DEFAULT_MAX_CONCURRENCY = 2


@dataclass
class HostLimits:
    min_time_ms: int = DEFAULT_MIN_TIME_MS
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY


@dataclass
class _Lane:
    limits: HostLimits
    semaphore: asyncio.Semaphore
    spacing: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_start: Optional[float] = None
    queued: int = 0
    running: int = 0


class HostScheduler:
    def __init__(
        self,
        resolver: Optional[Callable[[str], HostLimits]] = None,
        clock: Callable[[], float] = lambda: time.monotonic() * 1000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._resolver = resolver or (lambda host: HostLimits())
        self._clock = clock
        self._sleep = sleep
        self._lanes: dict[str, _Lane] = {}

    def _lane(self, host: str) -> _Lane:
        key = host.lower()
        lane = self._lanes.get(key)
        if lane is None:
            limits = self._resolver(key)
            lane = _Lane(limits=limits, semaphore=asyncio.Semaphore(limits.max_concurrency))
            self._lanes[key] = lane
            log.debug(
                "host_scheduler.lane_created",
                host=key,
                min_time_ms=limits.min_time_ms,
                max_concurrency=limits.max_concurrency,
            )
        return lane

    def limits(self, host: str) -> HostLimits:
        return self._lane(host).limits

    async def schedule(self, host: str, fn: Callable[[], Awaitable[T]]) -> T:
        lane = self._lane(host)
        lane.queued += 1
        dequeued = False
        try:
            async with lane.semaphore:
                async with lane.spacing:
                    if lane.last_start is not None:
                        wait_ms = lane.limits.min_time_ms - (self._clock() - lane.last_start)
                        if wait_ms > 0:
                            await self._sleep(wait_ms / 1000)
                    lane.last_start = self._clock()
                lane.queued -= 1
                dequeued = True
                lane.running += 1
                try:
                    return await fn()
                finally:
                    lane.running -= 1
        finally:
            if not dequeued:
                lane.queued -= 1

    def stats(self, host: str) -> Optional[dict[str, int]]:
        lane = self._lanes.get(host.lower())
        if lane is None:
            return None
        return {"queued": lane.queued, "running": lane.running}

    def all_stats(self) -> dict[str, dict[str, int]]:
        return {host: {"queued": l.queued, "running": l.running} for host, l in self._lanes.items()}

    def clear(self) -> None:
        self._lanes.clear()
