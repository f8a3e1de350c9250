"""
agent/verifier.py — Grounding self-check

Asks the model whether a reply is supported by the turn's facts.
Never blocks the reply: any failure (timeout, provider error, malformed
JSON) yields a warn verdict noted "offline_or_timeout".
"""

from __future__ import annotations

import json
from typing import Optional

from pydantic import ValidationError

from agent.receipts import VerifyResult
from brain.structured import complete
from brain.types import LLMConfig, ResponseFormat
from observability.logger import get_logger
from tools.types import Fact

log = get_logger(__name__)

_VERIFY_SYSTEM = """\
You check a travel assistant's reply against the evidence facts it was given.
Return ONLY a JSON object, no markdown fences:
{"verdict": "pass" | "warn" | "fail",
 "confidence": <0..1>,
 "notes": ["short note", ...],
 "scores": {"relevance": <0..1>, "grounding": <0..1>, "coherence": <0..1>, "context_consistency": <0..1>},
 "violations": ["claim not supported by facts", ...],
 "revised_answer": "<optional corrected reply>"}
"fail" means the reply states something the facts contradict.
"warn" means claims are unsupported but not contradicted."""


class Verifier:

    def __init__(self, llm, llm_config: LLMConfig, timeout: float = 6.0, resilience=None):
        self._llm = llm
        self._config = llm_config
        self._timeout = timeout
        self._resilience = resilience

    async def verify(
        self,
        reply: str,
        facts: list[Fact],
        message: str = "",
        slots: Optional[dict[str, str]] = None,
    ) -> VerifyResult:
        if self._llm is None:
            return VerifyResult.offline()

        context = {
            "latest_user_message": message,
            "assistant_reply": reply,
            "slots_summary": slots or {},
            "evidence_facts": [
                {"source": f.source, "key": f.key, "value": f.value} for f in facts
            ],
        }
        try:
            data = await complete(
                self._llm,
                self._config,
                _VERIFY_SYSTEM,
                "Verify the assistant reply against the evidence facts.",
                context=context,
                response_format=ResponseFormat.JSON,
                timeout=self._timeout,
                resilience=self._resilience,
                temperature=0.0,
            )
            result = VerifyResult.model_validate(data)
        except (ValidationError, json.JSONDecodeError) as e:
            log.warning("verifier.malformed", error=str(e))
            return VerifyResult.offline()
        except Exception as e:
            log.warning("verifier.failed", error=str(e), error_type=type(e).__name__)
            return VerifyResult.offline()

        log.info("verifier.verdict", verdict=result.verdict.value, notes=result.notes)
        return result
