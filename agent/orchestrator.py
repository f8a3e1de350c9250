"""
agent/orchestrator.py — Tool-Calling Orchestrator

Runs one routed turn as an explicit state machine:

    PLANNING → EXECUTING → BLENDING → VERIFYING → DONE
        │          │           │          │
        └──────────┴───────────┴──────────┴──→ ABORTED   (global turn timeout)

Guards:
  - plan confidence below threshold  → DONE with a clarifying question, no tool calls
  - no valid calls                    → straight to BLENDING
  - plan.verify is false              → VERIFYING skipped

Every LLM call and every dispatched tool call spends one step of the turn
budget. Calls beyond the remaining budget are skipped and recorded. Tool
failures are recorded as decisions and never end the turn. On the global
timeout pending tool tasks are cancelled, late results are discarded, and
the reply is built from the facts collected so far.

Usage:
    orc = Orchestrator(planner, blender, verifier, bus, registry)
    result = await orc.run("What should I pack for Oslo in March?", route, slots)
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from agent.blender import Blender, deterministic_reply
from agent.clarifier import build_clarifying_question
from agent.planner import Plan, Planner, fallback_plan
from agent.receipts import (
    DEFAULT_TOKEN_ESTIMATE,
    Decision,
    DecisionLike,
    Receipt,
    VerifyResult,
    apply_verdict,
    build_receipt,
    distinct_sources,
)
from agent.slots import missing_slots
from agent.types import RouterResult
from agent.verifier import Verifier
from exceptions import BlendingTimeoutError, PlanningTimeoutError, ToolFailure
from observability.logger import get_logger
from observability.metrics import metrics
from tools.args import parse_tool_args
from tools.tool_bus import ToolBus
from tools.tool_registry import ToolRegistry
from tools.types import Fact, ToolCall, ToolOutcome

log = get_logger(__name__)

# Max LLM + tool-call steps per single user turn
_MAX_STEPS = 8


class TurnState(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    BLENDING = "blending"
    VERIFYING = "verifying"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class TurnResult:
    reply: str
    facts: list[Fact]
    decisions: list[DecisionLike]
    citations: list[str]
    verdict: Optional[VerifyResult]
    state_trace: list[TurnState]
    receipt: Receipt
    plan: Optional[Plan] = None
    steps_used: int = 0
    budget_exhausted: bool = False

    @property
    def final_state(self) -> TurnState:
        return self.state_trace[-1]


@dataclass
class _Turn:
    """Mutable per-turn working state."""
    message: str
    route: RouterResult
    slots: dict[str, str]
    deadline: float
    state: TurnState = TurnState.PLANNING
    trace: list[TurnState] = field(default_factory=list)
    plan: Optional[Plan] = None
    calls: list[ToolCall] = field(default_factory=list)
    outcomes: list[Optional[ToolOutcome]] = field(default_factory=list)
    decisions: list[DecisionLike] = field(default_factory=list)
    reply: Optional[str] = None
    verdict: Optional[VerifyResult] = None
    steps_used: int = 0
    budget_exhausted: bool = False

    def enter(self, state: TurnState) -> None:
        self.state = state
        self.trace.append(state)
        log.info("orchestrator.state", state=state.value, steps_used=self.steps_used)

    @property
    def facts(self) -> list[Fact]:
        """Facts in plan order; calls still pending contribute nothing."""
        return [o.fact for o in self.outcomes if o is not None and o.fact is not None]


class Orchestrator:
    """
    Coordinates plan → execute → blend → verify for one routed turn.

    Inject all dependencies via constructor; use from_settings() when
    wiring up the application.
    """

    def __init__(
        self,
        planner: Planner,
        blender: Blender,
        verifier: Verifier,
        tool_bus: ToolBus,
        tool_registry: ToolRegistry,
        max_steps: int = _MAX_STEPS,
        turn_timeout: float = 20.0,
        plan_confidence_threshold: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._planner = planner
        self._blender = blender
        self._verifier = verifier
        self._bus = tool_bus
        self._registry = tool_registry
        self._max_steps = max_steps
        self._turn_timeout = turn_timeout
        self._threshold = plan_confidence_threshold
        self._clock = clock

    # ─────────────────────────────────────────────────────────────────────────
    # Public
    # ─────────────────────────────────────────────────────────────────────────

    async def run(
        self,
        message: str,
        route: RouterResult,
        slots: dict[str, str],
        forced_plan: Optional[Plan] = None,
    ) -> TurnResult:
        """
        Run one turn. Never raises for tool, model or timeout problems;
        the worst case is a deterministic reply built from whatever facts
        arrived in time.
        """
        t0 = self._clock()
        turn = _Turn(
            message=message,
            route=route,
            slots=dict(slots),
            deadline=t0 + self._turn_timeout,
        )

        try:
            await asyncio.wait_for(self._phases(turn, forced_plan), timeout=self._turn_timeout)
        except asyncio.TimeoutError:
            self._abort(turn)

        if turn.state != TurnState.ABORTED:
            turn.enter(TurnState.DONE)

        result = self._result(turn)
        metrics.observe("turn.latency_ms", (self._clock() - t0) * 1000, state=result.final_state.value)
        log.info(
            "orchestrator.turn_done",
            state=result.final_state.value,
            facts=len(result.facts),
            citations=result.citations,
            steps_used=turn.steps_used,
            budget_exhausted=turn.budget_exhausted,
        )
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Phases
    # ─────────────────────────────────────────────────────────────────────────

    async def _phases(self, turn: _Turn, forced_plan: Optional[Plan]) -> None:
        turn.enter(TurnState.PLANNING)
        plan = await self._plan(turn, forced_plan)
        turn.plan = plan

        if plan.confidence < self._threshold:
            turn.reply = build_clarifying_question(missing_slots(turn.route.intent.value, turn.slots))
            turn.decisions.append(Decision(
                action="Asked a clarifying question",
                rationale=f"plan confidence {plan.confidence:.2f} below {self._threshold:.2f}",
                confidence=plan.confidence,
            ))
            return

        turn.calls = self._validate_calls(turn, plan)
        if turn.calls:
            turn.enter(TurnState.EXECUTING)
            await self._execute(turn)

        turn.enter(TurnState.BLENDING)
        await self._blend(turn)

        if plan.verify:
            if self._steps_left(turn) < 1:
                turn.budget_exhausted = True
                turn.decisions.append("Skipped self-check (step budget exhausted)")
                return
            turn.enter(TurnState.VERIFYING)
            turn.steps_used += 1
            turn.verdict = await self._verifier.verify(turn.reply, turn.facts, turn.message, turn.slots)

    async def _plan(self, turn: _Turn, forced_plan: Optional[Plan]) -> Plan:
        if forced_plan is not None:
            turn.decisions.append(Decision(
                action=f"Used a forced {forced_plan.route} plan",
                rationale="user consented to the pending request",
                confidence=forced_plan.confidence,
            ))
            return forced_plan

        turn.steps_used += 1
        try:
            plan = await self._planner.create_plan(
                turn.message, turn.route, turn.slots, self._registry.to_llm_schemas()
            )
        except PlanningTimeoutError as e:
            plan = fallback_plan(turn.route, turn.slots, turn.message)
            turn.decisions.append(Decision(
                action=f"Used fallback plan for {plan.route}",
                rationale=str(e),
                alternatives=["model plan"],
                confidence=plan.confidence,
            ))
            return plan

        turn.decisions.append(Decision(
            action=f"Planned {len(plan.calls)} tool call(s) for {plan.route}",
            rationale="model plan",
            alternatives=[c.tool for c in fallback_plan(turn.route, turn.slots, turn.message).calls],
            confidence=plan.confidence,
        ))
        return plan

    def _validate_calls(self, turn: _Turn, plan: Plan) -> list[ToolCall]:
        calls: list[ToolCall] = []
        for idx, planned in enumerate(plan.calls):
            try:
                args = parse_tool_args(planned.tool, planned.args)
            except ToolFailure as e:
                log.warning("orchestrator.invalid_call", tool=planned.tool, reason=e.reason)
                turn.decisions.append(f"Rejected {planned.tool} call ({e.reason}: {e})")
                continue
            calls.append(ToolCall(id=f"call-{idx}", name=planned.tool, arguments=args.kwargs()))

        allowed = max(0, self._steps_left(turn) - self._reserved_steps(plan))
        if len(calls) > allowed:
            skipped = calls[allowed:]
            calls = calls[:allowed]
            turn.budget_exhausted = True
            turn.decisions.append(Decision(
                action=f"Skipped {len(skipped)} tool call(s): {', '.join(c.name for c in skipped)}",
                rationale="step budget exhausted",
            ))
        return calls

    async def _execute(self, turn: _Turn) -> None:
        turn.outcomes = [None] * len(turn.calls)
        turn.steps_used += len(turn.calls)
        # ToolBus deadlines are measured on its own clock
        bus_deadline = self._bus_deadline(turn)

        async def _one(idx: int, call: ToolCall) -> None:
            turn.outcomes[idx] = await self._bus.dispatch(call, deadline=bus_deadline)

        await asyncio.gather(*(_one(i, c) for i, c in enumerate(turn.calls)))

        for outcome in turn.outcomes:
            if outcome is not None and not outcome.ok:
                turn.decisions.append(f"Tool {outcome.tool} failed ({outcome.failure})")

    async def _blend(self, turn: _Turn) -> None:
        facts = turn.facts
        missing = missing_slots(turn.route.intent.value, turn.slots)
        if self._steps_left(turn) < 1:
            turn.budget_exhausted = True
            turn.reply = deterministic_reply(facts, missing)
            turn.decisions.append("Built reply from facts (step budget exhausted)")
            return

        turn.steps_used += 1
        try:
            turn.reply = await self._blender.blend(turn.message, facts, turn.slots, missing)
        except BlendingTimeoutError as e:
            turn.reply = deterministic_reply(facts, missing)
            turn.decisions.append(Decision(
                action="Built reply from facts",
                rationale=str(e),
                alternatives=["model reply"],
            ))

    def _abort(self, turn: _Turn) -> None:
        pending = sum(1 for o in turn.outcomes if o is None)
        turn.budget_exhausted = True
        turn.enter(TurnState.ABORTED)
        turn.decisions.append(Decision(
            action="Aborted turn",
            rationale=f"turn timeout {self._turn_timeout:.1f}s reached",
            alternatives=[f"{pending} pending tool call(s) cancelled"] if pending else [],
        ))
        if turn.reply is None:
            turn.reply = deterministic_reply(
                turn.facts, missing_slots(turn.route.intent.value, turn.slots)
            )
        metrics.incr("turn.aborted")
        log.warning("orchestrator.aborted", pending_calls=pending, facts=len(turn.facts))

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    def _steps_left(self, turn: _Turn) -> int:
        return self._max_steps - turn.steps_used

    def _reserved_steps(self, plan: Plan) -> int:
        # blending, plus verifying when requested
        return 1 + (1 if plan.verify else 0)

    def _bus_deadline(self, turn: _Turn) -> float:
        remaining = max(0.0, turn.deadline - self._clock())
        return self._bus.clock() + remaining

    def _result(self, turn: _Turn) -> TurnResult:
        facts = turn.facts
        usable = [f for f in facts if f.is_usable]
        receipt = build_receipt(facts, turn.decisions, DEFAULT_TOKEN_ESTIMATE)
        if turn.verdict is not None:
            receipt = apply_verdict(receipt, turn.verdict)
        return TurnResult(
            reply=turn.reply or build_clarifying_question([]),
            facts=facts,
            decisions=list(turn.decisions),
            citations=distinct_sources(usable),
            verdict=turn.verdict,
            state_trace=list(turn.trace),
            receipt=receipt,
            plan=turn.plan,
            steps_used=turn.steps_used,
            budget_exhausted=turn.budget_exhausted,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Factory
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(
        cls,
        settings,
        planner: Planner,
        blender: Blender,
        verifier: Verifier,
        tool_bus: ToolBus,
        tool_registry: ToolRegistry,
    ) -> "Orchestrator":
        agent = settings.agent
        return cls(
            planner=planner,
            blender=blender,
            verifier=verifier,
            tool_bus=tool_bus,
            tool_registry=tool_registry,
            max_steps=agent.max_steps,
            turn_timeout=agent.turn_timeout_ms / 1000.0,
            plan_confidence_threshold=agent.plan_confidence_threshold,
        )
