"""
resilience/service.py — Resilience Service

The one process-wide owner of breaker, limiter, host-lane and blocklist
state. Every outbound call (LLM and tool) goes through ResilienceService.call:

    blocklist check → rate limiter → circuit breaker → host scheduler → fn()

Breakers and limiters are created on first use per target name and live in
the service's registries, not in module globals, so tests can build a fresh
service and production code can reset() or shutdown() it explicitly.

Lifecycle:
    svc = init_resilience(settings)    # at startup
    svc = get_resilience()             # anywhere afterwards
    svc.reset()                        # zero every breaker/limiter, clear blocklist
    await shutdown_resilience()        # at exit
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, TypeVar

from exceptions import (
    HostBlockedError,
    RateLimitedError,
    ResilienceNotInitializedError,
)
from observability.logger import get_logger
from observability.metrics import metrics
from resilience.blocklist import DEFAULT_BLOCK_TTL_MS, HostBlocklist
from resilience.circuit_breaker import CircuitBreaker
from resilience.host_scheduler import HostLimits, HostScheduler
from resilience.rate_limiter import RateLimiter

log = get_logger(__name__)

T = TypeVar("T")


class ResilienceService:
    """
    Registry of per-target breakers and limiters plus the shared host
    scheduler and blocklist.

    Args:
        breaker_defaults:   kwargs for every new CircuitBreaker.
        limiter_defaults:   kwargs for every new RateLimiter.
        limiter_overrides:  target name → kwargs replacing limiter_defaults.
        host_resolver:      host → HostLimits for the host scheduler.
        blocklist_ttl_ms:   default TTL for blocked hosts.
        block_on_open:      when a host-bound breaker opens, block the host.
        clock:              ms clock shared by breakers and limiters (tests).
    """

    def __init__(
        self,
        breaker_defaults: Optional[dict[str, Any]] = None,
        limiter_defaults: Optional[dict[str, Any]] = None,
        limiter_overrides: Optional[dict[str, dict[str, Any]]] = None,
        host_resolver: Optional[Callable[[str], HostLimits]] = None,
        blocklist_ttl_ms: int = DEFAULT_BLOCK_TTL_MS,
        block_on_open: bool = True,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._breaker_defaults = dict(breaker_defaults or {})
        self._limiter_defaults = dict(limiter_defaults or {})
        self._limiter_overrides = {k: dict(v) for k, v in (limiter_overrides or {}).items()}
        self._clock = clock
        self._block_on_open = block_on_open
        self._breakers: dict[str, CircuitBreaker] = {}
        self._limiters: dict[str, RateLimiter] = {}
        self._target_hosts: dict[str, str] = {}
        self.scheduler = HostScheduler(resolver=host_resolver)
        self.blocklist = HostBlocklist(default_ttl_ms=blocklist_ttl_ms)
        self._closed = False

    # ── Factory ───────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(cls, settings) -> "ResilienceService":
        cfg = settings.resilience

        def _resolve(host: str) -> HostLimits:
            hl = settings.host_limits_for(host)
            return HostLimits(min_time_ms=hl.min_time_ms, max_concurrency=hl.max_concurrency)

        return cls(
            breaker_defaults=cfg.breaker.model_dump(),
            limiter_defaults=cfg.limiter.model_dump(),
            limiter_overrides={k: v.model_dump() for k, v in cfg.limiter_overrides.items()},
            host_resolver=_resolve,
            blocklist_ttl_ms=cfg.blocklist_ttl_ms,
        )

    # ── Registries ────────────────────────────────────────────────────────────

    def breaker(self, target: str) -> CircuitBreaker:
        b = self._breakers.get(target)
        if b is None:
            kwargs = dict(self._breaker_defaults)
            if self._clock is not None:
                kwargs["clock"] = self._clock
            b = CircuitBreaker(target, on_open=self._handle_open, **kwargs)
            self._breakers[target] = b
        return b

    def limiter(self, target: str) -> RateLimiter:
        lim = self._limiters.get(target)
        if lim is None:
            kwargs = dict(self._limiter_overrides.get(target, self._limiter_defaults))
            if self._clock is not None:
                kwargs["clock"] = self._clock
            lim = RateLimiter(name=target, **kwargs)
            self._limiters[target] = lim
        return lim

    # ── Guarded call ──────────────────────────────────────────────────────────

    async def call(
        self,
        target: str,
        fn: Callable[[], Awaitable[T]],
        host: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> T:
        """
        Run fn() under every resilience control for `target`. `timeout`
        (seconds) is enforced by the breaker, so an expiry counts against it.

        Raises HostBlockedError, RateLimitedError, BreakerOpenError or
        ToolTimeoutError (all ToolFailure subtypes), or whatever fn raised.
        """
        if self._closed:
            raise ResilienceNotInitializedError("ResilienceService has been shut down.")

        if host:
            if self.blocklist.is_blocked(host):
                metrics.incr("resilience.host_blocked", target=target)
                raise HostBlockedError(host)
            self._target_hosts[target] = host.lower()

        limiter = self.limiter(target)
        if not await limiter.acquire():
            raise RateLimitedError(target)

        try:
            breaker = self.breaker(target)

            async def _run() -> T:
                if host:
                    return await self.scheduler.schedule(host, fn)
                return await fn()

            return await breaker.execute(_run, timeout=timeout)
        finally:
            limiter.release()

    def _handle_open(self, target: str) -> None:
        host = self._target_hosts.get(target)
        if self._block_on_open and host:
            self.blocklist.block(host)

    # ── Introspection ─────────────────────────────────────────────────────────

    def breaker_stats(self) -> dict[str, dict[str, Any]]:
        """Per-target counters: state, opens, timeouts, failures, rejects, successes."""
        stats: dict[str, dict[str, Any]] = {}
        for name, b in self._breakers.items():
            m = b.get_metrics()
            stats[name] = {
                "state": m.state.value,
                "opens": m.opens,
                "timeouts": m.timeouts,
                "failures": m.total_failures,
                "rejects": m.rejects,
                "successes": m.total_successes,
            }
        return stats

    def limiter_stats(self) -> dict[str, dict[str, Any]]:
        return {name: lim.get_metrics() for name, lim in self._limiters.items()}

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def reset(self) -> None:
        for b in self._breakers.values():
            b.reset()
        for lim in self._limiters.values():
            lim.reset()
        self.blocklist.clear()
        log.info("resilience.reset", breakers=len(self._breakers), limiters=len(self._limiters))

    async def shutdown(self) -> None:
        self._breakers.clear()
        self._limiters.clear()
        self._target_hosts.clear()
        self.scheduler.clear()
        self.blocklist.clear()
        self._closed = True
        log.info("resilience.shutdown")


# ─────────────────────────────────────────────────────────────────────────────
# Process-wide service
# ─────────────────────────────────────────────────────────────────────────────

_service: Optional[ResilienceService] = None


def init_resilience(settings=None, service: Optional[ResilienceService] = None) -> ResilienceService:
    global _service
    _service = service or (
        ResilienceService.from_settings(settings) if settings is not None else ResilienceService()
    )
    log.info("resilience.initialized")
    return _service


def get_resilience() -> ResilienceService:
    if _service is None:
        raise ResilienceNotInitializedError(
            "Resilience service not initialized. Call init_resilience() at startup."
        )
    return _service


async def shutdown_resilience() -> None:
    global _service
    if _service is not None:
        await _service.shutdown()
    _service = None
