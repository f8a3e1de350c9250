"""
agent/types.py — Turn-level data models

Intent vocabulary and the router's result type, shared by the router,
planner, orchestrator and service.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class Intent(str, Enum):
    WEATHER = "weather"
    PACKING = "packing"
    ATTRACTIONS = "attractions"
    DESTINATIONS = "destinations"
    POLICY = "policy"
    FLIGHTS = "flights"
    IRROPS = "irrops"
    WEB_SEARCH = "web_search"
    SYSTEM = "system"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> "Intent":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


# Intents whose answer depends on an external fact provider
EXTERNAL_INTENTS: frozenset[Intent] = frozenset({
    Intent.WEATHER,
    Intent.PACKING,
    Intent.ATTRACTIONS,
    Intent.DESTINATIONS,
    Intent.POLICY,
    Intent.FLIGHTS,
    Intent.IRROPS,
    Intent.WEB_SEARCH,
})


class RouteMethod(str, Enum):
    EDGE = "edge"
    GUARD = "guard"
    HEURISTIC = "heuristic"
    LOCAL = "local"
    LLM = "llm"
    FALLBACK = "fallback"


class RouterResult(BaseModel):
    intent: Intent
    slots: dict[str, str] = Field(default_factory=dict)
    confidence: float = 0.0
    need_external: bool = False
    method: RouteMethod = RouteMethod.FALLBACK

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return max(0.0, min(1.0, float(v)))

    @property
    def is_guard(self) -> bool:
        return self.method == RouteMethod.GUARD

    @classmethod
    def build(
        cls,
        intent: Intent,
        confidence: float,
        method: RouteMethod,
        slots: dict[str, str] | None = None,
    ) -> "RouterResult":
        return cls(
            intent=intent,
            slots=slots or {},
            confidence=confidence,
            need_external=intent in EXTERNAL_INTENTS,
            method=method,
        )
