"""
agent/receipts.py — Turn receipts

A receipt is the compact audit card for one turn: which sources were used,
which decisions were taken, what the self-check said, and what the turn
cost. One receipt per thread, replaced every turn, shown by /why.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field

from tools.types import Fact

# Rough per-turn token cost; real usage is not tracked per call
DEFAULT_TOKEN_ESTIMATE = 400

NO_RECEIPT_TEXT = "No receipts available for this thread yet."


class Verdict(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


# ─────────────────────────────────────────────────────────────────────────────
# Decisions
# ─────────────────────────────────────────────────────────────────────────────


class Decision(BaseModel):
    """Structured decision; rendered as one line on the receipt."""
    action: str
    rationale: str = ""
    alternatives: list[str] = Field(default_factory=list)
    confidence: Optional[float] = None

    def render(self) -> str:
        details = []
        if self.rationale:
            details.append(f"rationale: {self.rationale}")
        if self.alternatives:
            details.append(f"alternatives: {', '.join(self.alternatives)}")
        if self.confidence is not None:
            details.append(f"confidence: {self.confidence:.2f}")
        if not details:
            return self.action
        return f"{self.action} ({', '.join(details)})"


DecisionLike = Union[str, Decision]


def render_decision(decision: DecisionLike) -> str:
    return decision if isinstance(decision, str) else decision.render()


# ─────────────────────────────────────────────────────────────────────────────
# Receipt
# ─────────────────────────────────────────────────────────────────────────────


class SelfCheck(BaseModel):
    verdict: Verdict = Verdict.WARN
    notes: list[str] = Field(default_factory=list)


class Budgets(BaseModel):
    ext_api_latency_ms: float = 0.0
    token_estimate: Optional[int] = None


class Receipt(BaseModel):
    sources: list[str] = Field(default_factory=list)
    decisions: list[str] = Field(default_factory=list)
    self_check: SelfCheck = Field(default_factory=SelfCheck)
    budgets: Budgets = Field(default_factory=Budgets)


class VerifyScores(BaseModel):
    relevance: float = 0.5
    grounding: float = 0.5
    coherence: float = 0.5
    context_consistency: float = 0.5


class VerifyResult(BaseModel):
    verdict: Verdict
    confidence: Optional[float] = None
    notes: list[str] = Field(default_factory=list)
    scores: Optional[VerifyScores] = None
    violations: list[str] = Field(default_factory=list)
    revised_answer: Optional[str] = None

    @classmethod
    def offline(cls) -> "VerifyResult":
        return cls(verdict=Verdict.WARN, notes=["offline_or_timeout"], scores=VerifyScores())


def distinct_sources(facts: list[Fact]) -> list[str]:
    """Fact sources, deduplicated, in first-seen order."""
    seen: list[str] = []
    for f in facts:
        if f.source not in seen:
            seen.append(f.source)
    return seen


def build_receipt(
    facts: list[Fact],
    decisions: list[DecisionLike],
    token_estimate: Optional[int] = DEFAULT_TOKEN_ESTIMATE,
) -> Receipt:
    """Receipt skeleton; the verifier's verdict is applied separately."""
    return Receipt(
        sources=distinct_sources(facts),
        decisions=[render_decision(d) for d in decisions],
        self_check=SelfCheck(verdict=Verdict.WARN, notes=["self-check not run"]),
        budgets=Budgets(
            ext_api_latency_ms=sum(f.latency_ms or 0.0 for f in facts),
            token_estimate=token_estimate,
        ),
    )


def apply_verdict(receipt: Receipt, result: VerifyResult) -> Receipt:
    return receipt.model_copy(
        update={"self_check": SelfCheck(verdict=result.verdict, notes=list(result.notes))}
    )


def format_receipt(receipt: Receipt) -> str:
    """Render the /why card."""
    sources = ", ".join(receipt.sources) if receipt.sources else "none"
    decisions = "; ".join(receipt.decisions) if receipt.decisions else "none"
    notes = ", ".join(receipt.self_check.notes)
    check = receipt.self_check.verdict.value + (f" ({notes})" if notes else "")
    latency = round(receipt.budgets.ext_api_latency_ms)
    tokens = receipt.budgets.token_estimate if receipt.budgets.token_estimate is not None else 0
    return (
        "--- RECEIPTS ---\n\n"
        f"Sources: {sources}\n\n"
        f"Decisions: {decisions}\n\n"
        f"Self-Check: {check}\n\n"
        f"Budget: {latency}ms API, ~{tokens} tokens"
    )
