"""
agent/planner.py — Turn Planner

Turns a routed message into a tool plan with one LLM JSON call:

    {"route": "weather", "confidence": 0.8,
     "calls": [{"tool": "weather", "args": {"city": "Lisbon"}}],
     "verify": true}

When the call times out or returns something unusable, fallback_plan()
derives a deterministic plan from the router's intent and slots.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from agent.slots import missing_slots
from agent.types import Intent, RouterResult
from brain.structured import complete
from brain.types import LLMConfig, ResponseFormat
from exceptions import PlanningTimeoutError
from observability.logger import get_logger

log = get_logger(__name__)

_PLAN_SYSTEM = """\
You plan tool calls for a travel assistant.
Pick the smallest set of tool calls whose results answer the user's message.
Return ONLY a JSON object, no markdown fences, no explanation.

Available tools:
{tool_list}

Required format:
{{"route": "<intent>",
  "confidence": <0..1, how sure you are the plan answers the message>,
  "calls": [{{"tool": "<tool name>", "args": {{...}}}}],
  "verify": <true if the reply should be fact-checked>}}
Use an empty "calls" list when no tool helps."""


class PlannedCall(BaseModel):
    tool: str
    args: dict[str, Any] = Field(default_factory=dict)


class Plan(BaseModel):
    route: str = Intent.UNKNOWN.value
    confidence: float = 0.0
    calls: list[PlannedCall] = Field(default_factory=list)
    verify: bool = True
    fallback: bool = False

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return max(0.0, min(1.0, float(v)))

    def __repr__(self) -> str:
        return f"<Plan route={self.route} calls={len(self.calls)} confidence={self.confidence}>"


class Planner:
    """Uses the LLM to choose tool calls for a turn."""

    def __init__(self, llm, llm_config: LLMConfig, timeout: float = 8.0, resilience=None):
        self._llm = llm
        # Low temperature for repeatable plans, short output
        self._config = llm_config.derive(temperature=0.2, max_tokens=400)
        self._timeout = timeout
        self._resilience = resilience

    async def create_plan(
        self,
        message: str,
        route: RouterResult,
        slots: dict[str, str],
        tools: list[dict[str, Any]],
    ) -> Plan:
        """
        Ask the LLM for a plan.

        Raises:
            PlanningTimeoutError: the call timed out, failed, or returned an
                                  unusable plan. Callers fall back to
                                  fallback_plan().
        """
        if self._llm is None:
            raise PlanningTimeoutError("no language model configured")

        tool_list = "\n".join(f"- {t['name']}: {t['description']} args={t['parameters']}" for t in tools)
        context = {"intent": route.intent.value, "slots": slots}

        log.info("planner.create_plan", intent=route.intent.value, tools=len(tools))
        try:
            data = await complete(
                self._llm,
                self._config,
                _PLAN_SYSTEM.format(tool_list=tool_list or "none"),
                message,
                context=context,
                response_format=ResponseFormat.JSON,
                timeout=self._timeout,
                resilience=self._resilience,
            )
            return Plan.model_validate(data)
        except asyncio.TimeoutError as e:
            log.warning("planner.timeout", timeout=self._timeout)
            raise PlanningTimeoutError(f"planning timed out after {self._timeout}s") from e
        except ValidationError as e:
            log.warning("planner.parse_plan_failed", error=str(e))
            raise PlanningTimeoutError("planner returned an invalid plan") from e
        except Exception as e:
            log.warning("planner.create_plan_failed", error=str(e), error_type=type(e).__name__)
            raise PlanningTimeoutError(f"planning failed: {type(e).__name__}") from e


def fallback_plan(route: RouterResult, slots: dict[str, str], message: str = "") -> Plan:
    """
    Deterministic plan from the router's intent and the turn's slots.

    Confidence is 0 when a required slot is missing, so the orchestrator
    asks a clarifying question instead of guessing.
    """
    intent = route.intent
    calls: list[PlannedCall] = []
    confidence = route.confidence
    city = slots.get("city") or slots.get("destinationCity")

    if intent in (Intent.WEATHER, Intent.PACKING):
        if city:
            args = {"city": city}
            if slots.get("month"):
                args["month"] = slots["month"]
            calls.append(PlannedCall(tool="weather", args=args))
    elif intent == Intent.ATTRACTIONS:
        if city:
            calls.append(PlannedCall(tool="search", args={"query": f"top attractions in {city}"}))
    elif intent == Intent.DESTINATIONS:
        place = slots.get("region") or city
        if place:
            calls.append(PlannedCall(tool="country", args={"name": place}))
    elif intent == Intent.WEB_SEARCH:
        query = slots.get("search_query") or message
        if query:
            calls.append(PlannedCall(tool="search", args={"query": query}))

    if missing_slots(intent.value, slots):
        confidence = 0.0

    return Plan(
        route=intent.value,
        confidence=confidence,
        calls=calls,
        verify=bool(calls),
        fallback=True,
    )
