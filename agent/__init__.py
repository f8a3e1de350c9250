"""
agent/ — Wayfarer Agent Core

Public API:
    from agent import WayfarerService, ChatInput, ChatOutput

Component overview:
    IntentRouter        Message → one Intent + slots, cheapest stage first
    context_transition  Which prior slots survive an intent change
    Planner             Message + route → tool calls (fallback_plan when the model fails)
    Orchestrator        PLANNING → EXECUTING → BLENDING → VERIFYING → DONE | ABORTED
    Blender             Facts → reply with a Sources line
    Verifier            Post-hoc self-check of the reply against the facts
    ThreadState         Slots, last intent, messages, receipts and consent per thread
    WayfarerService     handle_turn() entry point, per-thread serialization
"""

from agent.blender import Blender
from agent.orchestrator import Orchestrator, TurnResult, TurnState
from agent.planner import Plan, PlannedCall, Planner, fallback_plan
from agent.receipts import Decision, Receipt, VerifyResult, format_receipt
from agent.router import IntentRouter
from agent.service import ChatInput, ChatOutput, WayfarerService
from agent.thread_state import ThreadState
from agent.types import Intent, RouteMethod, RouterResult
from agent.verifier import Verifier

__all__ = [
    "WayfarerService",
    "ChatInput",
    "ChatOutput",
    "IntentRouter",
    "Intent",
    "RouteMethod",
    "RouterResult",
    "Orchestrator",
    "TurnResult",
    "TurnState",
    "Planner",
    "Plan",
    "PlannedCall",
    "fallback_plan",
    "Blender",
    "Verifier",
    "Decision",
    "Receipt",
    "VerifyResult",
    "format_receipt",
    "ThreadState",
]
