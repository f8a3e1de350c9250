"""
tests/unit/test_receipts.py — Receipts and Verifier Tests

Covers:
  - A turn with no facts still yields a receipt: no sources, zero latency, warn
  - Sources are distinct and in first-seen order; latency is summed
  - Decisions render as one line each
  - format_receipt produces the /why card
  - Verifier parses the model verdict and degrades to warn/offline on failure
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from agent.receipts import (
    Decision,
    Receipt,
    Verdict,
    VerifyResult,
    apply_verdict,
    build_receipt,
    distinct_sources,
    format_receipt,
    render_decision,
)
from agent.verifier import Verifier
from brain.llm_client import LLMConnectionError
from brain.types import LLMConfig, LLMResponse
from tools.types import Fact


def _fact(source: str, value="x", latency_ms: float = 100.0) -> Fact:
    return Fact(source=source, key=source.lower(), value=value, latency_ms=latency_ms)


def _llm(content: str = "", side_effect=None) -> MagicMock:
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=LLMResponse(content=content), side_effect=side_effect)
    return llm


# ─────────────────────────────────────────────────────────────────────────────
# Receipts
# ─────────────────────────────────────────────────────────────────────────────


class TestBuildReceipt:

    def test_empty_turn(self):
        receipt = build_receipt([], [])
        assert receipt.sources == []
        assert receipt.budgets.ext_api_latency_ms == 0
        assert receipt.self_check.verdict == Verdict.WARN
        assert receipt.budgets.token_estimate == 400

    def test_sources_distinct_in_order(self):
        facts = [_fact("Open-Meteo"), _fact("REST Countries"), _fact("Open-Meteo")]
        assert distinct_sources(facts) == ["Open-Meteo", "REST Countries"]
        assert build_receipt(facts, []).sources == ["Open-Meteo", "REST Countries"]

    def test_latency_summed(self):
        facts = [_fact("A", latency_ms=120.0), _fact("B", latency_ms=80.5)]
        assert build_receipt(facts, []).budgets.ext_api_latency_ms == pytest.approx(200.5)

    def test_missing_latency_counts_as_zero(self):
        fact = Fact(source="A", key="a", value="x")
        assert build_receipt([fact], []).budgets.ext_api_latency_ms == 0

    def test_decisions_rendered(self):
        receipt = build_receipt([], [
            "Tool weather failed (timeout)",
            Decision(action="Used fallback plan for weather", rationale="planning timed out",
                     alternatives=["model plan"], confidence=0.7),
        ])
        assert receipt.decisions == [
            "Tool weather failed (timeout)",
            "Used fallback plan for weather (rationale: planning timed out, "
            "alternatives: model plan, confidence: 0.70)",
        ]

    def test_apply_verdict_replaces_self_check(self):
        receipt = build_receipt([_fact("A")], [])
        updated = apply_verdict(receipt, VerifyResult(verdict=Verdict.PASS, notes=["grounded"]))
        assert updated.self_check.verdict == Verdict.PASS
        assert updated.self_check.notes == ["grounded"]
        assert receipt.self_check.verdict == Verdict.WARN


class TestDecision:

    def test_bare_action(self):
        assert Decision(action="Asked a clarifying question").render() == "Asked a clarifying question"

    def test_string_passes_through(self):
        assert render_decision("plain") == "plain"


class TestFormatReceipt:

    def test_card_layout(self):
        receipt = build_receipt(
            [_fact("Open-Meteo", latency_ms=412.4)],
            ["Planned 1 tool call(s) for weather"],
        )
        card = format_receipt(apply_verdict(receipt, VerifyResult(verdict=Verdict.PASS)))
        assert card == (
            "--- RECEIPTS ---\n\n"
            "Sources: Open-Meteo\n\n"
            "Decisions: Planned 1 tool call(s) for weather\n\n"
            "Self-Check: pass\n\n"
            "Budget: 412ms API, ~400 tokens"
        )

    def test_empty_fields_render_none(self):
        card = format_receipt(Receipt())
        assert "Sources: none" in card
        assert "Decisions: none" in card
        assert "Budget: 0ms API, ~0 tokens" in card

    def test_notes_in_parentheses(self):
        card = format_receipt(build_receipt([], []))
        assert "Self-Check: warn (self-check not run)" in card


# ─────────────────────────────────────────────────────────────────────────────
# Verifier
# ─────────────────────────────────────────────────────────────────────────────


class TestVerifier:

    @pytest.fixture
    def config(self):
        return LLMConfig(model="test-model")

    @pytest.mark.asyncio
    async def test_parses_verdict(self, config):
        payload = {
            "verdict": "pass",
            "confidence": 0.9,
            "notes": ["grounded"],
            "scores": {"relevance": 0.9, "grounding": 0.95, "coherence": 0.9, "context_consistency": 0.8},
            "violations": [],
        }
        llm = _llm(json.dumps(payload))
        result = await Verifier(llm, config).verify("It is 18°C.", [_fact("Open-Meteo")], "weather?")
        assert result.verdict == Verdict.PASS
        assert result.scores.grounding == pytest.approx(0.95)

    @pytest.mark.asyncio
    async def test_fenced_json_accepted(self, config):
        llm = _llm('```json\n{"verdict": "fail", "notes": ["wrong temperature"]}\n```')
        result = await Verifier(llm, config).verify("It is 40°C.", [_fact("Open-Meteo")])
        assert result.verdict == Verdict.FAIL

    @pytest.mark.asyncio
    async def test_runs_at_temperature_zero(self, config):
        llm = _llm('{"verdict": "pass"}')
        await Verifier(llm, config).verify("ok", [_fact("A")])
        sent_config = llm.generate.call_args.kwargs["config"]
        assert sent_config.temperature == 0.0

    @pytest.mark.asyncio
    async def test_malformed_output_is_offline_warn(self, config):
        result = await Verifier(_llm("not json at all"), config).verify("ok", [])
        assert result.verdict == Verdict.WARN
        assert result.notes == ["offline_or_timeout"]

    @pytest.mark.asyncio
    async def test_unknown_verdict_is_offline_warn(self, config):
        result = await Verifier(_llm('{"verdict": "maybe"}'), config).verify("ok", [])
        assert result.notes == ["offline_or_timeout"]

    @pytest.mark.asyncio
    async def test_provider_error_is_offline_warn(self, config):
        llm = _llm(side_effect=LLMConnectionError("down", provider="openai"))
        result = await Verifier(llm, config).verify("ok", [])
        assert result.verdict == Verdict.WARN
        assert result.notes == ["offline_or_timeout"]

    @pytest.mark.asyncio
    async def test_timeout_is_offline_warn(self, config):
        async def _slow(**kwargs):
            await asyncio.sleep(1)

        llm = MagicMock()
        llm.generate = _slow
        result = await Verifier(llm, config, timeout=0.01).verify("ok", [])
        assert result.notes == ["offline_or_timeout"]

    @pytest.mark.asyncio
    async def test_no_model_is_offline_warn(self, config):
        result = await Verifier(None, config).verify("ok", [])
        assert result == VerifyResult.offline()
