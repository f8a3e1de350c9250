"""
resilience/circuit_breaker.py — Circuit Breaker

Protects one external target (an LLM provider, a fact provider, a host) from
cascading failures.

States:
  CLOSED     normal operation; consecutive failures are counted
  OPEN       calls fail fast with BreakerOpenError, the wrapped function is
             never invoked, until reset_timeout has elapsed
  HALF_OPEN  probe mode; success_threshold successes close the breaker,
             any failure re-opens it

Transitions:
  CLOSED    → OPEN       failure_count >= failure_threshold
  OPEN      → HALF_OPEN  first call after next_attempt
  HALF_OPEN → CLOSED     success_count >= success_threshold
  HALF_OPEN → OPEN       any failure

Every wrapped call is bounded by timeout_ms; a timeout counts as a failure.
All state mutation happens under an asyncio.Lock, so concurrent turns never
observe a half-updated breaker.

Usage:
    breaker = CircuitBreaker("weather", failure_threshold=5)
    data = await breaker.execute(lambda: fetch_forecast(city))
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from exceptions import BreakerOpenError, ToolTimeoutError
from observability.logger import get_logger
from observability.metrics import metrics

log = get_logger(__name__)

T = TypeVar("T")


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class BreakerMetrics:
    name: str
    state: BreakerState
    failure_count: int
    success_count: int
    last_failure_time: Optional[float]
    next_attempt: Optional[float]
    total_requests: int
    total_failures: int
    total_successes: int
    rejects: int
    timeouts: int
    opens: int
    failures_in_window: int

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["state"] = self.state.value
        return d


class CircuitBreaker:
    """Per-target circuit breaker. See module docstring for the state machine."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        success_threshold: int = 3,
        timeout_ms: int = 60000,
        reset_timeout_ms: int = 30000,
        monitoring_period_ms: int = 10000,
        clock: Callable[[], float] = _monotonic_ms,
        on_open: Optional[Callable[[str], None]] = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout_ms = timeout_ms
        self.reset_timeout_ms = reset_timeout_ms
        self.monitoring_period_ms = monitoring_period_ms
        self._clock = clock
        self._on_open = on_open
        self._lock = asyncio.Lock()
        self._recent_failures: deque[float] = deque()
        self._init_state()

    def _init_state(self) -> None:
        self.state = BreakerState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.next_attempt: Optional[float] = None
        self.total_requests = 0
        self.total_failures = 0
        self.total_successes = 0
        self.rejects = 0
        self.timeouts = 0
        self.opens = 0
        self._recent_failures.clear()

    # ── Public API ────────────────────────────────────────────────────────────

    async def execute(self, fn: Callable[[], Awaitable[T]], timeout: Optional[float] = None) -> T:
        """
        Run fn() through the breaker.

        `timeout` (seconds) tightens timeout_ms for this call only; a caller
        with a shorter budget still has the expiry counted as a failure.

        Raises:
            BreakerOpenError:  breaker is OPEN and reset_timeout has not elapsed;
                               fn is not called.
            ToolTimeoutError:  fn exceeded its timeout (counted as a failure).
            Exception:         whatever fn raised (counted as a failure).
        """
        async with self._lock:
            self.total_requests += 1
            if self.state == BreakerState.OPEN:
                if self.next_attempt is not None and self._clock() < self.next_attempt:
                    self.rejects += 1
                    metrics.incr("breaker.reject", target=self.name)
                    log.debug("breaker.rejected", target=self.name)
                    raise BreakerOpenError(self.name)
                self.state = BreakerState.HALF_OPEN
                self.success_count = 0
                log.info("breaker.half_open", target=self.name)

        limit_s = self.timeout_ms / 1000
        if timeout is not None:
            limit_s = min(limit_s, timeout)

        try:
            result = await asyncio.wait_for(fn(), timeout=limit_s)
        except asyncio.TimeoutError as e:
            async with self._lock:
                self.timeouts += 1
                self._record_failure()
            raise ToolTimeoutError(
                self.name, f"{self.name} timed out after {limit_s * 1000:.0f}ms"
            ) from e
        except asyncio.CancelledError:
            # Turn-level cancellation is not the target's fault
            raise
        except Exception:
            async with self._lock:
                self._record_failure()
            raise

        async with self._lock:
            self._record_success()
        return result

    async def is_open(self) -> bool:
        async with self._lock:
            return self.state == BreakerState.OPEN

    def get_metrics(self) -> BreakerMetrics:
        now = self._clock()
        window_start = now - self.monitoring_period_ms
        return BreakerMetrics(
            name=self.name,
            state=self.state,
            failure_count=self.failure_count,
            success_count=self.success_count,
            last_failure_time=self.last_failure_time,
            next_attempt=self.next_attempt,
            total_requests=self.total_requests,
            total_failures=self.total_failures,
            total_successes=self.total_successes,
            rejects=self.rejects,
            timeouts=self.timeouts,
            opens=self.opens,
            failures_in_window=sum(1 for t in self._recent_failures if t >= window_start),
        )

    def reset(self) -> None:
        """Force the breaker back to CLOSED with zeroed counters."""
        self._init_state()
        log.info("breaker.reset", target=self.name)

    # ── Transitions (caller holds the lock) ──────────────────────────────────

    def _record_success(self) -> None:
        self.failure_count = 0
        self.total_successes += 1
        if self.state == BreakerState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self.state = BreakerState.CLOSED
                self.success_count = 0
                self.next_attempt = None
                log.info("breaker.closed", target=self.name)

    def _record_failure(self) -> None:
        now = self._clock()
        self.failure_count += 1
        self.total_failures += 1
        self.last_failure_time = now
        self._recent_failures.append(now)
        while self._recent_failures and self._recent_failures[0] < now - self.monitoring_period_ms:
            self._recent_failures.popleft()

        if self.state == BreakerState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self._trip(now)

    def _trip(self, now: float) -> None:
        self.state = BreakerState.OPEN
        self.success_count = 0
        self.next_attempt = now + self.reset_timeout_ms
        self.opens += 1
        metrics.incr("breaker.open", target=self.name)
        log.warning(
            "breaker.opened",
            target=self.name,
            failures=self.failure_count,
            reset_timeout_ms=self.reset_timeout_ms,
        )
        if self._on_open is not None:
            try:
                self._on_open(self.name)
            except Exception as e:
                log.warning("breaker.on_open_failed", target=self.name, error=str(e))

    def __repr__(self) -> str:
        return f"<CircuitBreaker {self.name} state={self.state.value} failures={self.failure_count}>"
