"""
tools/types.py — Tool System Data Models

Shared types used across the tool registry, tool bus, the orchestrator
and all fact-provider adapters.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ─────────────────────────────────────────────────────────────────────────────
# Tool registration metadata
# ─────────────────────────────────────────────────────────────────────────────


class ToolSchema(BaseModel):
    """
    Metadata for a registered tool.
    Stored in ToolRegistry; rendered into the planner prompt.
    """
    name: str
    description: str
    source: str                          # citation label of the facts it yields
    host: Optional[str] = None           # upstream host, for host scheduling and blocklisting
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )
    enabled: bool = True

    def to_llm_schema(self) -> dict[str, Any]:
        """Return the schema in the shape the planner prompt lists."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Runtime tool call / result types
# ─────────────────────────────────────────────────────────────────────────────


class ToolCall(BaseModel):
    """A planned tool invocation, before validation and execution."""
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class Fact(BaseModel):
    """
    One piece of externally sourced information. Immutable once produced;
    a turn only ever appends facts.
    """
    model_config = ConfigDict(frozen=True)

    source: str
    key: str
    value: Any
    url: Optional[str] = None
    latency_ms: Optional[float] = None

    @property
    def is_usable(self) -> bool:
        """A fact only counts as evidence when it carries a non-empty value."""
        if self.value is None:
            return False
        if isinstance(self.value, (str, list, dict, tuple)):
            return len(self.value) > 0
        return True


class ToolOutcome(BaseModel):
    """Result of one dispatched call: exactly one of `fact` or `failure` is set."""
    call_id: str
    tool: str
    fact: Optional[Fact] = None
    failure: Optional[str] = None        # ToolFailure.reason
    detail: str = ""
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.fact is not None

    @classmethod
    def success(cls, call: ToolCall, fact: Fact, duration_ms: float = 0.0) -> "ToolOutcome":
        return cls(call_id=call.id, tool=call.name, fact=fact, duration_ms=duration_ms)

    @classmethod
    def failed(
        cls,
        call: ToolCall,
        reason: str,
        detail: str = "",
        duration_ms: float = 0.0,
    ) -> "ToolOutcome":
        return cls(
            call_id=call.id,
            tool=call.name,
            failure=reason,
            detail=detail,
            duration_ms=duration_ms,
        )
