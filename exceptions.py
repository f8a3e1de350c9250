"""
exceptions.py — Wayfarer Unified Error Hierarchy

All Wayfarer-specific exceptions live here. Every layer of the stack
raises typed subclasses of WayfarerError — never bare Exception.

Import from here, not from individual modules:
    from exceptions import BreakerOpenError, StoreUnavailableError

Hierarchy:
    WayfarerError
    ├── RoutingAmbiguousError
    ├── ToolFailure
    │   ├── UnknownToolError
    │   ├── ToolValidationError
    │   ├── ToolTimeoutError
    │   ├── BreakerOpenError
    │   ├── RateLimitedError
    │   └── HostBlockedError
    ├── TurnError
    │   ├── PlanningTimeoutError
    │   ├── BlendingTimeoutError
    │   └── BudgetExhaustedError
    ├── StoreError
    │   ├── StoreUnavailableError
    │   └── StoreNotInitializedError
    ├── ResilienceError
    │   └── ResilienceNotInitializedError
    └── LLMError  (re-exported from brain for convenience)
        ├── LLMConnectionError
        ├── LLMRateLimitError
        ├── LLMContextError
        └── LLMInvalidRequestError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class WayfarerError(Exception):
    """Base class for all Wayfarer exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Routing
# ─────────────────────────────────────────────────────────────────────────────

class RoutingAmbiguousError(WayfarerError):
    """Router confidence fell below the threshold. Answered with a clarifying question."""

    def __init__(self, confidence: float, message: str = "") -> None:
        self.confidence = confidence
        super().__init__(message or f"Intent ambiguous (confidence={confidence:.2f})")


# ─────────────────────────────────────────────────────────────────────────────
# Tool layer
# ─────────────────────────────────────────────────────────────────────────────

class ToolFailure(WayfarerError):
    """A single tool call failed. Recorded and excluded from the turn's facts."""

    reason: str = "tool_failed"

    def __init__(self, tool: str, message: str = "", reason: Optional[str] = None) -> None:
        self.tool = tool
        if reason:
            self.reason = reason
        super().__init__(message or f"Tool '{tool}' failed: {self.reason}")


class UnknownToolError(ToolFailure):
    """The plan named a tool that is not registered."""
    reason = "unknown_tool"


class ToolValidationError(ToolFailure):
    """Tool arguments did not match the tool's argument schema."""
    reason = "invalid_args"


class ToolTimeoutError(ToolFailure):
    """Tool execution exceeded its deadline."""
    reason = "timeout"


class BreakerOpenError(ToolFailure):
    """The circuit breaker for the target is open; the call was not attempted."""
    reason = "breaker_open"

    def __init__(self, target: str, message: str = "") -> None:
        super().__init__(target, message or f"Circuit breaker is OPEN for {target}")
        self.target = target


class RateLimitedError(ToolFailure):
    """The rate limiter rejected the call right now."""
    reason = "rate_limited"

    def __init__(self, target: str, message: str = "") -> None:
        super().__init__(target, message or f"Rate limit exceeded for {target}")
        self.target = target


class HostBlockedError(ToolFailure):
    """The destination host is temporarily on the blocklist."""
    reason = "host_blocked"

    def __init__(self, host: str, message: str = "") -> None:
        super().__init__(host, message or f"Host '{host}' is temporarily blocked")
        self.host = host


# ─────────────────────────────────────────────────────────────────────────────
# Turn budget / timeouts
# ─────────────────────────────────────────────────────────────────────────────

class TurnError(WayfarerError):
    """Base for turn orchestration errors. Never surfaced to the user."""


class PlanningTimeoutError(TurnError):
    """The planning LLM call timed out or failed."""


class BlendingTimeoutError(TurnError):
    """The blending LLM call timed out or failed."""


class BudgetExhaustedError(TurnError):
    """The turn hit its step budget or global timeout."""


# ─────────────────────────────────────────────────────────────────────────────
# Session store
# ─────────────────────────────────────────────────────────────────────────────

class StoreError(WayfarerError):
    """Base for session store errors."""


class StoreUnavailableError(StoreError):
    """A session store read or write failed or timed out."""


class StoreNotInitializedError(StoreError):
    """A session store was used before `await store.init()`."""


# ─────────────────────────────────────────────────────────────────────────────
# Resilience service
# ─────────────────────────────────────────────────────────────────────────────

class ResilienceError(WayfarerError):
    """Base for resilience service lifecycle errors."""


class ResilienceNotInitializedError(ResilienceError):
    """init_resilience() has not been called before first use."""


# ─────────────────────────────────────────────────────────────────────────────
# LLM layer, re-exported; defined in brain/llm_client.py
# ─────────────────────────────────────────────────────────────────────────────

from brain.llm_client import (  # noqa: E402,F401
    LLMError,
    LLMConnectionError,
    LLMRateLimitError,
    LLMContextError,
    LLMInvalidRequestError,
)


__all__ = [
    "WayfarerError",
    # Routing
    "RoutingAmbiguousError",
    # Tools
    "ToolFailure",
    "UnknownToolError",
    "ToolValidationError",
    "ToolTimeoutError",
    "BreakerOpenError",
    "RateLimitedError",
    "HostBlockedError",
    # Turn
    "TurnError",
    "PlanningTimeoutError",
    "BlendingTimeoutError",
    "BudgetExhaustedError",
    # Store
    "StoreError",
    "StoreUnavailableError",
    "StoreNotInitializedError",
    # Resilience
    "ResilienceError",
    "ResilienceNotInitializedError",
    # LLM (re-exported)
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
]
