"""
agent/service.py — Wayfarer service entry point

One call per user turn:

    consent check → route → context transition → orchestrate → persist

The service owns the per-thread locks, so turns on one thread run one at a
time while different threads run concurrently. Nothing raised inside a turn
reaches the caller; the only errors that escape are invalid input and store
or resilience initialization failures at startup.

Usage:
    service = WayfarerService.from_settings(settings)
    await service.startup()
    out = await service.handle_turn({"message": "Weather in Paris?"})
    print(out.reply)
"""

from __future__ import annotations

import asyncio
import re
import uuid
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from agent.blender import Blender
from agent.clarifier import HELP_REPLY, SYSTEM_REPLY, build_clarifying_question
from agent.consent import DECLINED_TEXT, OFFER_TEXT, ConsentVerdict, classify_consent
from agent.context_transition import merge_for_turn
from agent.orchestrator import Orchestrator, TurnResult
from agent.planner import Plan, PlannedCall, Planner
from agent.receipts import NO_RECEIPT_TEXT, Receipt, format_receipt
from agent.router import IntentRouter
from agent.slots import missing_slots
from agent.thread_state import ThreadState
from agent.types import Intent, RouteMethod, RouterResult
from agent.verifier import Verifier
from brain import LLMClientFactory
from brain.llm_client import LLMConnectionError
from brain.types import LLMConfig
from memory.session_store import SessionStore, create_session_store
from observability.logger import bind_thread, clear_thread, get_logger
from observability.metrics import metrics
from resilience.service import ResilienceService, init_resilience, shutdown_resilience
from tools import setup_tools
from tools.tool_bus import ToolBus
from tools.tool_registry import ToolRegistry

log = get_logger(__name__)

# At least one letter or digit; anything else is emoji or punctuation
_HAS_WORD = re.compile(r"[^\W_]")

# Intents whose empty-handed turns end with a web-search offer
_CONSENT_INTENTS = frozenset({Intent.POLICY, Intent.WEB_SEARCH})


# ─────────────────────────────────────────────────────────────────────────────
# I/O models
# ─────────────────────────────────────────────────────────────────────────────


class ChatInput(BaseModel):
    message: str = Field(min_length=1, max_length=2000)
    thread_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    receipts: bool = False


class ChatOutput(BaseModel):
    reply: str
    thread_id: str
    citations: list[str] = Field(default_factory=list)
    receipts: Optional[Receipt] = None


# ─────────────────────────────────────────────────────────────────────────────
# Service
# ─────────────────────────────────────────────────────────────────────────────


class _ThreadLock:
    """Per-thread turn lock plus the number of turns holding or awaiting it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class WayfarerService:
    """
    Wires the router, orchestrator and thread state into handle_turn().

    Inject all dependencies via constructor; use from_settings() when
    wiring up the application.
    """

    def __init__(
        self,
        router: IntentRouter,
        orchestrator: Orchestrator,
        thread_state: ThreadState,
        resilience: Optional[ResilienceService] = None,
        web_search_consent: bool = True,
        settings=None,
    ):
        self._router = router
        self._orchestrator = orchestrator
        self._threads = thread_state
        self._resilience = resilience
        self._web_search_consent = web_search_consent
        self._settings = settings
        self._locks: dict[str, _ThreadLock] = {}

    @property
    def thread_state(self) -> ThreadState:
        return self._threads

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def startup(self) -> None:
        """Initialize the store and install the resilience service. Errors propagate."""
        await self._threads.store.init()
        self._resilience = init_resilience(self._settings, service=self._resilience)
        log.info("service.started", store=type(self._threads.store).__name__)

    async def shutdown(self) -> None:
        await self._threads.store.close()
        await shutdown_resilience()
        log.info("service.stopped")

    # ── Turns ─────────────────────────────────────────────────────────────────

    async def handle_turn(self, request: Union[ChatInput, dict[str, Any]]) -> ChatOutput:
        """
        Answer one user message.

        Raises:
            pydantic.ValidationError: the request itself is malformed
                                      (message not a string or over 2000 chars,
                                      thread id over 64).
        """
        if isinstance(request, dict):
            raw = request.get("message")
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                thread_id = request.get("thread_id") or _new_thread_id()
                return ChatOutput(reply=HELP_REPLY, thread_id=thread_id)
            request = ChatInput.model_validate(request)

        thread_id = request.thread_id or _new_thread_id()
        if not _HAS_WORD.search(request.message):
            return ChatOutput(reply=HELP_REPLY, thread_id=thread_id)

        entry = self._locks.get(thread_id)
        if entry is None:
            entry = self._locks[thread_id] = _ThreadLock()
        entry.users += 1
        try:
            async with entry.lock:
                bind_thread(thread_id)
                try:
                    return await self._turn(request, thread_id)
                finally:
                    clear_thread()
        finally:
            # Last holder or waiter drops the entry
            entry.users -= 1
            if entry.users == 0:
                del self._locks[thread_id]

    async def _turn(self, request: ChatInput, thread_id: str) -> ChatOutput:
        message = request.message.strip()
        metrics.incr("service.turns")
        log.info("service.turn_started", chars=len(message))

        consent = await self._threads.read_consent(thread_id)
        forced_plan: Optional[Plan] = None
        route: Optional[RouterResult] = None

        if consent.awaiting:
            verdict = classify_consent(message)
            await self._threads.write_consent(thread_id)
            log.info("service.consent", kind=consent.kind, verdict=verdict.value)
            if verdict == ConsentVerdict.NO:
                return await self._reply_only(thread_id, message, DECLINED_TEXT)
            if verdict == ConsentVerdict.YES and consent.pending:
                route = RouterResult.build(
                    Intent.WEB_SEARCH, 0.9, RouteMethod.GUARD, {"search_query": consent.pending}
                )
                forced_plan = Plan(
                    route=Intent.WEB_SEARCH.value,
                    confidence=0.9,
                    calls=[PlannedCall(tool="search", args={"query": consent.pending})],
                    verify=True,
                )
                message = consent.pending

        prior = await self._threads.get_slots(thread_id)
        if route is None:
            route = await self._router.route(message, prior, thread_id=thread_id)
            if route.is_guard:
                prior = await self._threads.get_slots(thread_id)

        if route.intent == Intent.SYSTEM:
            return await self._reply_only(thread_id, message, SYSTEM_REPLY)
        if route.intent == Intent.UNKNOWN:
            return await self._reply_only(
                thread_id, message, build_clarifying_question(missing_slots(route.intent.value, route.slots))
            )

        last_intent = await self._threads.get_last_intent(thread_id)
        ages = await self._threads.slot_ages(thread_id)
        slots = merge_for_turn(prior, route.slots, last_intent, route.intent.value, ages)

        result = await self._orchestrator.run(message, route, slots, forced_plan=forced_plan)
        reply = result.reply

        await self._threads.replace_slots(thread_id, slots)
        if self._should_offer_search(route, result, forced_plan):
            reply = f"{reply}\n\n{OFFER_TEXT}"
            await self._threads.write_consent(thread_id, kind="web_after_rag", pending=message)

        await self._threads.set_last_intent(thread_id, route.intent.value)
        await self._threads.append_message(thread_id, "user", request.message)
        await self._threads.append_message(thread_id, "assistant", reply)
        await self._threads.save_receipt(thread_id, result.receipt)

        log.info(
            "service.turn_done",
            intent=route.intent.value,
            state=result.final_state.value,
            citations=result.citations,
        )
        return ChatOutput(
            reply=reply,
            thread_id=thread_id,
            citations=result.citations,
            receipts=result.receipt if request.receipts else None,
        )

    async def _reply_only(self, thread_id: str, message: str, reply: str) -> ChatOutput:
        await self._threads.append_message(thread_id, "user", message)
        await self._threads.append_message(thread_id, "assistant", reply)
        return ChatOutput(reply=reply, thread_id=thread_id)

    def _should_offer_search(
        self, route: RouterResult, result: TurnResult, forced_plan: Optional[Plan]
    ) -> bool:
        if not self._web_search_consent or forced_plan is not None:
            return False
        if route.intent not in _CONSENT_INTENTS:
            return False
        return not any(f.is_usable for f in result.facts)

    # ── Receipts ──────────────────────────────────────────────────────────────

    async def get_last_receipt(self, thread_id: str) -> Optional[Receipt]:
        return await self._threads.load_receipt(thread_id)

    async def why(self, thread_id: str) -> str:
        receipt = await self.get_last_receipt(thread_id)
        if receipt is None:
            return NO_RECEIPT_TEXT
        return format_receipt(receipt)

    # ── Factory ───────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(
        cls,
        settings,
        store: Optional[SessionStore] = None,
        llm=None,
        registry: Optional[ToolRegistry] = None,
    ) -> "WayfarerService":
        """
        Build the full object graph from Settings.

        Without a usable language model the service still runs: routing
        falls back to the local classifier and planning, blending and
        verification take their deterministic paths.
        """
        if llm is None:
            try:
                llm = LLMClientFactory.from_settings(settings)
            except (LLMConnectionError, ValueError) as e:
                log.warning("service.llm_unavailable", error=str(e))

        llm_config = LLMConfig(
            model=settings.default_llm_model,
            temperature=settings.llm.temperature,
            max_tokens=settings.llm.max_tokens,
            timeout_seconds=settings.llm.timeout_seconds,
        )
        resilience = ResilienceService.from_settings(settings)
        store = store or create_session_store(settings)
        thread_state = ThreadState(store, timeout_ms=settings.session.timeout_ms)
        registry = registry or setup_tools(settings.tools.enabled)
        agent = settings.agent

        router = IntentRouter(
            llm=llm,
            llm_config=llm_config,
            config=settings.router,
            resilience=resilience,
            thread_state=thread_state,
        )
        orchestrator = Orchestrator.from_settings(
            settings,
            planner=Planner(llm, llm_config, agent.planning_timeout_ms / 1000.0, resilience),
            blender=Blender(llm, llm_config, agent.blending_timeout_ms / 1000.0, resilience),
            verifier=Verifier(llm, llm_config, agent.verify_timeout_ms / 1000.0, resilience),
            tool_bus=ToolBus.from_settings(settings, registry, resilience),
            tool_registry=registry,
        )
        return cls(
            router=router,
            orchestrator=orchestrator,
            thread_state=thread_state,
            resilience=resilience,
            web_search_consent=settings.tools.web_search_consent,
            settings=settings,
        )


def _new_thread_id() -> str:
    return uuid.uuid4().hex
