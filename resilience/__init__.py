"""
resilience/ — Wayfarer Resilience Layer

Public API:
    from resilience import ResilienceService, init_resilience, get_resilience

Component overview:
    CircuitBreaker     per-target closed / open / half-open state machine
    RateLimiter        non-blocking token bucket with concurrency + spacing
    HostScheduler      per-host queue with min spacing and concurrency cap
    HostBlocklist      TTL set of hosts excluded after repeated failures
    ResilienceService  process-wide registry that composes all of the above
"""

from resilience.blocklist import HostBlocklist
from resilience.circuit_breaker import BreakerMetrics, BreakerState, CircuitBreaker
from resilience.host_scheduler import HostLimits, HostScheduler
from resilience.rate_limiter import RateLimiter
from resilience.service import (
    ResilienceService,
    get_resilience,
    init_resilience,
    shutdown_resilience,
)

__all__ = [
    "BreakerMetrics",
    "BreakerState",
    "CircuitBreaker",
    "HostBlocklist",
    "HostLimits",
    "HostScheduler",
    "RateLimiter",
    "ResilienceService",
    "get_resilience",
    "init_resilience",
    "shutdown_resilience",
]
