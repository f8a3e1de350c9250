"""
tools/tool_bus.py — Tool Bus

The dispatcher between the orchestrator and the fact providers.
Every planned tool call is routed through here.

Flow:
  ToolCall → ToolBus.dispatch()
    → Registry lookup (is tool registered and enabled?)
    → Argument validation (tagged union in tools/args.py)
    → ResilienceService.call (blocklist → limiter → breaker → host lane)
    → Handler execution (async, bounded by the per-tool timeout and turn deadline)
    → ToolOutcome (Fact or failure reason)

dispatch() never raises on a tool problem. Cancellation is the only thing
that propagates, so the orchestrator can abandon a turn.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from exceptions import ToolFailure, ToolTimeoutError, UnknownToolError
from observability.logger import get_logger
from observability.metrics import metrics
from tools.args import parse_tool_args
from tools.tool_registry import ToolRegistry
from tools.types import Fact, ToolCall, ToolOutcome

log = get_logger(__name__)

# Default tool execution timeout
DEFAULT_TIMEOUT_SECONDS = 8.0


class ToolBus:
    """
    Routes planned tool calls through validation and resilience controls
    to the registered adapters.

    Usage:
        bus = ToolBus(registry, resilience, timeouts={"weather": 7.0})
        outcome = await bus.dispatch(call, deadline=loop.time() + 5)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        resilience,
        timeouts: Optional[dict[str, float]] = None,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            registry:        Tool registry with the registered adapters.
            resilience:      ResilienceService every call runs under.
            timeouts:        tool name → seconds.
            default_timeout: seconds for tools without an entry in `timeouts`.
            clock:           seconds clock the `deadline` argument is measured on.
        """
        self.registry = registry
        self.resilience = resilience
        self.timeouts = dict(timeouts or {})
        self.default_timeout = default_timeout
        self.clock = clock

    @classmethod
    def from_settings(cls, settings, registry: ToolRegistry, resilience) -> "ToolBus":
        tools = settings.tools
        return cls(
            registry=registry,
            resilience=resilience,
            timeouts={name: tools.timeout_for(name) for name in tools.timeouts_ms},
            default_timeout=tools.default_timeout_ms / 1000.0,
        )

    def timeout_for(self, tool: str, deadline: Optional[float] = None) -> float:
        timeout = self.timeouts.get(tool, self.default_timeout)
        if deadline is not None:
            timeout = min(timeout, max(0.0, deadline - self.clock()))
        return timeout

    async def dispatch(self, call: ToolCall, deadline: Optional[float] = None) -> ToolOutcome:
        """
        Dispatch a tool call through the full pipeline.

        Args:
            call:     The planned tool call.
            deadline: Absolute time on the bus clock after which the call
                      is not worth waiting for (the turn deadline).

        Returns:
            ToolOutcome (always; errors are captured as a failure reason).
        """
        start = time.monotonic()
        log.info("tool_bus.dispatch", tool=call.name, call_id=call.id)

        # ── Step 1: Registry lookup ───────────────────────────────────────────
        schema = self.registry.get_schema(call.name)
        handler = self.registry.get_handler(call.name)
        if schema is None or handler is None or not schema.enabled:
            return self._failed(call, UnknownToolError(call.name), start)

        # ── Step 2: Argument validation ───────────────────────────────────────
        try:
            args = parse_tool_args(call.name, call.arguments)
        except ToolFailure as e:
            return self._failed(call, e, start)

        # ── Step 3: Execute under resilience controls with timeout ────────────
        timeout = self.timeout_for(call.name, deadline)
        if timeout <= 0:
            return self._failed(call, ToolTimeoutError(call.name, "turn deadline already passed"), start)

        kwargs = args.kwargs()

        async def _invoke() -> Any:
            return await handler(**kwargs)

        try:
            raw = await self.resilience.call(call.name, _invoke, host=schema.host, timeout=timeout)
        except ToolFailure as e:
            return self._failed(call, e, start)
        except Exception as e:
            log.error(
                "tool_bus.execution_error",
                tool=call.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._failed(call, ToolFailure(call.name, f"{type(e).__name__}: {e}", "provider_error"), start)

        # ── Step 4: Normalise result ──────────────────────────────────────────
        duration_ms = (time.monotonic() - start) * 1000
        fact = _normalise_fact(raw, schema.source, call.name, duration_ms)

        metrics.observe("tool.latency_ms", duration_ms, tool=call.name)
        metrics.incr("tool.success", tool=call.name)
        log.info(
            "tool_bus.success",
            tool=call.name,
            call_id=call.id,
            duration_ms=round(duration_ms, 1),
            usable=fact.is_usable,
        )
        return ToolOutcome.success(call, fact, duration_ms=duration_ms)

    def _failed(self, call: ToolCall, error: ToolFailure, start: float) -> ToolOutcome:
        duration_ms = (time.monotonic() - start) * 1000
        metrics.incr("tool.failure", tool=call.name, reason=error.reason)
        log.warning(
            "tool_bus.failed",
            tool=call.name,
            call_id=call.id,
            reason=error.reason,
            detail=str(error),
        )
        return ToolOutcome.failed(call, error.reason, detail=str(error), duration_ms=duration_ms)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _normalise_fact(raw: Any, source: str, key: str, duration_ms: float) -> Fact:
    """Adapters return a Fact; anything else is wrapped as one."""
    if isinstance(raw, Fact):
        if raw.latency_ms is None:
            return raw.model_copy(update={"latency_ms": round(duration_ms, 1)})
        return raw
    return Fact(source=source, key=key, value=raw, latency_ms=round(duration_ms, 1))
