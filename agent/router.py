"""
agent/router.py — Intent Router

Classifies one user message into exactly one Intent with a confidence,
cheapest stage first:

  1. Edge guards        empty / no letters          → unknown 0.1
  2. Deterministic      help, explicit search, visa → system / web_search / policy 0.9
  3. Flight heuristic   origin+destination+date     → flights 0.9, no model call
  4. Length guard       > max_message_chars         → unknown 0.2
  5. Cascade            local classifier ≥ local_accept, else LLM > llm_accept,
                        else best local result
  6. Threshold          confidence < unknown_threshold → unknown

Slots are extracted for every non-guard result. route() never raises;
its worst case is unknown at 0.1.
"""

from __future__ import annotations

import asyncio
import re
from typing import Optional

from agent.classifier import Classification, classify
from agent.slots import extract_slots, normalize_slots
from agent.types import Intent, RouteMethod, RouterResult
from brain.structured import complete
from brain.types import LLMConfig, ResponseFormat
from config.settings import RouterConfig
from observability.logger import get_logger
from observability.metrics import metrics

log = get_logger(__name__)

EDGE_CONFIDENCE = 0.1
GUARD_CONFIDENCE = 0.9
LONG_MESSAGE_CONFIDENCE = 0.2

# ─────────────────────────────────────────────────────────────────────────────
# Patterns
# ─────────────────────────────────────────────────────────────────────────────

RE_FLIGHT_DIRECT = re.compile(r"\b(from|ex)\s+[\w\s.'-]+?\s+(to|→|-?>)\s+[\w\s.'-]+", re.IGNORECASE)
RE_IATA_PAIR = re.compile(r"\b([A-Z]{3})\s*(to|→|-?>)\s*([A-Z]{3})\b")
RE_DATEISH = re.compile(
    r"\b(today|tomorrow|this (week|weekend|month)|next (week|month)|\d{1,2}[-/]\d{1,2}([-/]\d{2,4})?)\b",
    re.IGNORECASE,
)
RE_MONTH_DAY = re.compile(
    r"\b(jan(uary)?|feb(ruary)?|mar(ch)?|apr(il)?|may|june?|july?|aug(ust)?|sept?(ember)?|oct(ober)?"
    r"|nov(ember)?|dec(ember)?)\.?\s+\d{1,2}(st|nd|rd|th)?\b",
    re.IGNORECASE,
)

RE_SYSTEM = re.compile(
    r"^\s*/?help\s*[?!.]*\s*$|\bwhat can you do\b|\bwho are you\b|\bwhat are you\b",
    re.IGNORECASE,
)
RE_SEARCH = re.compile(
    r"\b(?:search\s+(?:the\s+web\s+|online\s+)?for|google)\s+(.+)$",
    re.IGNORECASE,
)
RE_POLICY = re.compile(
    r"\b(visa|visas|passport|entry requirements?|immigration|customs)\b"
    r"|\b(baggage|luggage|refund|cancellation|carry[- ]on)\s+(polic(y|ies)|allowance|rules?|fees?)\b",
    re.IGNORECASE,
)
_HAS_LETTER = re.compile(r"[^\W\d_]", re.UNICODE)

# ─────────────────────────────────────────────────────────────────────────────
# LLM classification prompt
# ─────────────────────────────────────────────────────────────────────────────

_CLASSIFY_SYSTEM = """\
You classify messages sent to a travel assistant.
Return ONLY a JSON object, no markdown fences:
{"intent": "<one of: weather, packing, attractions, destinations, policy, flights, irrops, web_search, system, unknown>",
 "confidence": <number between 0 and 1>}
Use "unknown" when the message is not a travel question."""


def is_direct_flight(message: str) -> bool:
    m = message.strip()
    has_od = bool(RE_FLIGHT_DIRECT.search(m) or RE_IATA_PAIR.search(m))
    has_date = bool(RE_DATEISH.search(m) or RE_MONTH_DAY.search(m))
    return has_od and has_date


class IntentRouter:
    """
    Confidence-gated intent classification with cheap stages first.

    Args:
        llm:           BaseLLMClient for the escalation stage (None disables it).
        llm_config:    base LLMConfig; the classification call runs at temperature 0.
        config:        RouterConfig thresholds and timeouts.
        resilience:    ResilienceService the LLM call runs under (target "llm").
        thread_state:  ThreadState; guard hits clear the thread's workflow slots.
    """

    def __init__(
        self,
        llm=None,
        llm_config: Optional[LLMConfig] = None,
        config: Optional[RouterConfig] = None,
        resilience=None,
        thread_state=None,
    ):
        self._llm = llm
        self._llm_config = llm_config or LLMConfig(model="gpt-4o-mini")
        self._cfg = config or RouterConfig()
        self._resilience = resilience
        self._thread_state = thread_state

    async def route(
        self,
        message: str,
        prior_slots: Optional[dict[str, str]] = None,
        thread_id: Optional[str] = None,
    ) -> RouterResult:
        try:
            result = await self._route(message or "", prior_slots or {})
        except Exception as e:
            log.error("router.failed", error=str(e), error_type=type(e).__name__)
            result = RouterResult.build(Intent.UNKNOWN, EDGE_CONFIDENCE, RouteMethod.FALLBACK)

        if result.is_guard and thread_id and self._thread_state is not None:
            await self._thread_state.clear_workflow(thread_id)

        metrics.incr("router.intent", intent=result.intent.value, method=result.method.value)
        log.info(
            "router.routed",
            intent=result.intent.value,
            confidence=result.confidence,
            method=result.method.value,
            slots=sorted(result.slots),
        )
        return result

    # ── Stages ────────────────────────────────────────────────────────────────

    async def _route(self, message: str, prior_slots: dict[str, str]) -> RouterResult:
        text = message.strip()

        # 1. Edge guards
        if not text or not _HAS_LETTER.search(text):
            log.debug("router.edge_guard", empty=not text)
            return RouterResult.build(Intent.UNKNOWN, EDGE_CONFIDENCE, RouteMethod.EDGE)

        # 2. Deterministic guards
        guarded = self._guard(text)
        if guarded is not None:
            log.info("router.guard_hit", intent=guarded.intent.value)
            return guarded

        # 3. Direct-flight heuristic
        if is_direct_flight(text):
            slots = normalize_slots(extract_slots(text), Intent.FLIGHTS.value)
            return RouterResult.build(Intent.FLIGHTS, GUARD_CONFIDENCE, RouteMethod.HEURISTIC, slots)

        # 4. Long messages are not worth a model call
        if len(text) > self._cfg.max_message_chars:
            return RouterResult.build(Intent.UNKNOWN, LONG_MESSAGE_CONFIDENCE, RouteMethod.FALLBACK)

        # 5. Cascade
        intent, confidence, method = await self._cascade(text, prior_slots)

        # 6. Threshold
        if confidence < self._cfg.unknown_threshold:
            intent = Intent.UNKNOWN

        slots = normalize_slots(extract_slots(text), intent.value)
        return RouterResult.build(intent, confidence, method, slots)

    def _guard(self, text: str) -> Optional[RouterResult]:
        if RE_SYSTEM.search(text):
            return RouterResult.build(Intent.SYSTEM, GUARD_CONFIDENCE, RouteMethod.GUARD)
        search = RE_SEARCH.search(text)
        if search:
            query = search.group(1).strip().rstrip("?.!")
            if query:
                return RouterResult.build(
                    Intent.WEB_SEARCH, GUARD_CONFIDENCE, RouteMethod.GUARD, {"search_query": query}
                )
        if RE_POLICY.search(text):
            return RouterResult.build(Intent.POLICY, GUARD_CONFIDENCE, RouteMethod.GUARD)
        return None

    async def _cascade(self, text: str, prior_slots: dict[str, str]) -> tuple[Intent, float, RouteMethod]:
        local = await self._classify_local(text)
        if local.intent != "unknown" and local.confidence >= self._cfg.local_accept:
            return Intent.parse(local.intent), local.confidence, RouteMethod.LOCAL

        llm_result = await self._classify_llm(text, prior_slots)
        if llm_result is not None:
            intent, confidence = llm_result
            if confidence > self._cfg.llm_accept:
                return intent, confidence, RouteMethod.LLM

        return Intent.parse(local.intent), local.confidence, RouteMethod.LOCAL

    async def _classify_local(self, text: str) -> Classification:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(classify, text),
                timeout=self._cfg.classifier_timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            log.warning("router.local_timeout")
            return Classification("unknown", 0.0)

    async def _classify_llm(self, text: str, prior_slots: dict[str, str]) -> Optional[tuple[Intent, float]]:
        if self._llm is None:
            return None
        try:
            data = await complete(
                self._llm,
                self._llm_config,
                _CLASSIFY_SYSTEM,
                text,
                context={"prior_slots": prior_slots} if prior_slots else None,
                response_format=ResponseFormat.JSON,
                timeout=self._cfg.llm_timeout_ms / 1000.0,
                resilience=self._resilience,
                temperature=0.0,
                max_tokens=100,
            )
        except Exception as e:
            log.warning("router.llm_failed", error=str(e), error_type=type(e).__name__)
            return None

        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        return Intent.parse(data.get("intent")), max(0.0, min(1.0, confidence))
