"""
agent/blender.py — Reply blending

Folds the turn's facts into the user-facing reply. The LLM writes the
prose; when it times out or errors, a deterministic reply is assembled
from the facts themselves. Either way the reply is never empty and never
cites a source that contributed no usable fact.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from agent.clarifier import build_clarifying_question
from agent.receipts import distinct_sources
from brain.structured import complete
from brain.types import LLMConfig, ResponseFormat
from exceptions import BlendingTimeoutError
from observability.logger import get_logger
from tools.types import Fact

log = get_logger(__name__)

NO_FACTS_PREFIX = "I couldn't verify that right now; here's what I can say: "

_BLEND_SYSTEM = """\
You are Wayfarer, a concise travel assistant.
Answer the user's message using ONLY the evidence facts provided in the context.
Do not invent numbers, dates or rules that are not in the facts.
Keep it under 120 words. Do not add a sources list; it is appended for you."""

_NO_FACTS_SYSTEM = """\
You are Wayfarer, a concise travel assistant.
No live data is available for this message. Give brief, general travel guidance
in two or three sentences and avoid specific numbers, prices or dates."""


def render_value(value: Any) -> str:
    if isinstance(value, list):
        lines = []
        for item in value[:5]:
            if isinstance(item, dict):
                title = item.get("title") or item.get("name") or ""
                snippet = item.get("snippet") or ""
                lines.append(f"- {title}: {snippet}".rstrip(": "))
            else:
                lines.append(f"- {item}")
        return "\n".join(lines)
    if isinstance(value, dict):
        return "; ".join(f"{k}: {v}" for k, v in value.items())
    return str(value)


def sources_line(facts: list[Fact]) -> str:
    sources = distinct_sources([f for f in facts if f.is_usable])
    return f"Sources: {', '.join(sources)}" if sources else ""


def deterministic_reply(facts: list[Fact], missing: Optional[list[str]] = None) -> str:
    """Reply built from facts alone, used when the model is unavailable."""
    usable = [f for f in facts if f.is_usable]
    if not usable:
        return NO_FACTS_PREFIX + build_clarifying_question(missing or [])
    body = "\n".join(render_value(f.value) for f in usable)
    return f"{body}\n\n{sources_line(usable)}"


class Blender:

    def __init__(self, llm, llm_config: LLMConfig, timeout: float = 8.0, resilience=None):
        self._llm = llm
        self._config = llm_config
        self._timeout = timeout
        self._resilience = resilience

    async def blend(
        self,
        message: str,
        facts: list[Fact],
        slots: Optional[dict[str, str]] = None,
        missing: Optional[list[str]] = None,
    ) -> str:
        """
        Raises:
            BlendingTimeoutError: the model call failed or returned nothing.
                                  Callers fall back to deterministic_reply().
        """
        if self._llm is None:
            raise BlendingTimeoutError("no language model configured")

        usable = [f for f in facts if f.is_usable]
        system = _BLEND_SYSTEM if usable else _NO_FACTS_SYSTEM
        context = {
            "slots": slots or {},
            "evidence_facts": [
                {"source": f.source, "key": f.key, "value": f.value} for f in usable
            ],
        }
        try:
            text = await complete(
                self._llm,
                self._config,
                system,
                message,
                context=context,
                response_format=ResponseFormat.TEXT,
                timeout=self._timeout,
                resilience=self._resilience,
            )
        except asyncio.TimeoutError as e:
            log.warning("blender.timeout", timeout=self._timeout)
            raise BlendingTimeoutError(f"blending timed out after {self._timeout}s") from e
        except Exception as e:
            log.warning("blender.failed", error=str(e), error_type=type(e).__name__)
            raise BlendingTimeoutError(f"blending failed: {type(e).__name__}") from e

        text = (text or "").strip()
        if not text:
            raise BlendingTimeoutError("model returned an empty reply")

        if not usable:
            return f"{NO_FACTS_PREFIX}{text}\n\n{build_clarifying_question(missing or [])}"
        return f"{text}\n\n{sources_line(usable)}"
