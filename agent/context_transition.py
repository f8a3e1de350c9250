"""
agent/context_transition.py — Context Transition Engine

Pure decision logic: given the slots a thread carried under one intent,
decide which of them survive into the next intent.

Every slot name belongs to exactly one static category:
  user preference       always kept (relevance 0.95)
  workflow state        always dropped on an intent change (0.0)
  intent-specific       kept on same/related intents per transition rules
  conversation context  decays linearly to 0 over one hour

Relevance table (a slot is kept iff relevance >= PRESERVE_THRESHOLD):
  user preference                        0.95
  workflow state                         0.0
  same intent                            0.9
  related intents, rule preserve-list    0.8
  related intents, rule clear-list       0.0
  related intents, otherwise             0.6
  unrelated intents                      0.2 * max(0, 1 - age_minutes / 60)

These numbers are fixed behaviour, pinned by tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

# ─────────────────────────────────────────────────────────────────────────────
# Static configuration
# ─────────────────────────────────────────────────────────────────────────────

USER_PREFERENCE_SLOTS: frozenset[str] = frozenset({
    "passengers",
    "cabinClass",
    "travelerProfile",
})

INTENT_SPECIFIC_SLOTS: frozenset[str] = frozenset({
    "originCity",
    "destinationCity",
    "city",
    "flightNumber",
    "dates",
    "departureDate",
    "returnDate",
    "month",
    "region",
})

WORKFLOW_STATE_SLOTS: frozenset[str] = frozenset({
    "awaiting_search_consent",
    "awaiting_deep_research_consent",
    "awaiting_web_search_consent",
    "pending_search_query",
    "pending_deep_research_query",
    "pending_web_search_query",
    "amadeus_failed",
    "flight_clarification_needed",
    "awaiting_flight_clarification",
})

CONVERSATION_CONTEXT_SLOTS: frozenset[str] = frozenset({
    "last_search_query",
    "recordLocator",
    "disruptionType",
})

SLOT_CATEGORIES: dict[str, frozenset[str]] = {
    "user_preferences": USER_PREFERENCE_SLOTS,
    "intent_specific": INTENT_SPECIFIC_SLOTS,
    "workflow_state": WORKFLOW_STATE_SLOTS,
    "conversation_context": CONVERSATION_CONTEXT_SLOTS,
}

# Minimal allowlist of intents known to share context; lookup is symmetric
INTENT_RELATIONSHIPS: dict[str, tuple[str, ...]] = {
    "weather": ("packing", "attractions"),
    "packing": ("weather", "attractions"),
    "attractions": ("weather", "packing"),
    "flights": ("irrops",),
    "irrops": ("flights",),
    "destinations": (),
    "policy": (),
    "web_search": (),
    "system": (),
    "unknown": (),
}


@dataclass(frozen=True)
class TransitionRule:
    from_intent: str
    to_intent: str
    preserve: frozenset[str] = field(default_factory=frozenset)
    clear: frozenset[str] = field(default_factory=frozenset)


CONTEXT_TRANSITIONS: tuple[TransitionRule, ...] = (
    TransitionRule("weather", "packing", preserve=frozenset({"city", "month", "dates"})),
    TransitionRule("weather", "attractions", preserve=frozenset({"city"}),
                   clear=frozenset({"month", "dates"})),
    TransitionRule("flights", "irrops",
                   preserve=frozenset({"originCity", "destinationCity", "departureDate"})),
    TransitionRule("flights", "weather",
                   clear=frozenset({"originCity", "destinationCity", "departureDate", "returnDate"})),
    TransitionRule("weather", "flights", clear=frozenset({"city", "month", "dates"})),
)

PRESERVE_THRESHOLD = 0.7

USER_PREFERENCE_RELEVANCE = 0.95
WORKFLOW_RELEVANCE = 0.0
SAME_INTENT_RELEVANCE = 0.9
RULE_PRESERVE_RELEVANCE = 0.8
RULE_CLEAR_RELEVANCE = 0.0
RELATED_DEFAULT_RELEVANCE = 0.6
UNRELATED_BASE_RELEVANCE = 0.2
DECAY_WINDOW_MINUTES = 60.0


# ─────────────────────────────────────────────────────────────────────────────
# Lookups
# ─────────────────────────────────────────────────────────────────────────────


def slot_category(slot: str) -> Optional[str]:
    for name, members in SLOT_CATEGORIES.items():
        if slot in members:
            return name
    return None


def are_intents_related(from_intent: str, to_intent: str) -> bool:
    return (
        from_intent == to_intent
        or to_intent in INTENT_RELATIONSHIPS.get(from_intent, ())
        or from_intent in INTENT_RELATIONSHIPS.get(to_intent, ())
    )


def get_transition_rule(from_intent: str, to_intent: str) -> Optional[TransitionRule]:
    for rule in CONTEXT_TRANSITIONS:
        if rule.from_intent == from_intent and rule.to_intent == to_intent:
            return rule
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Scoring
# ─────────────────────────────────────────────────────────────────────────────


def context_relevance(
    slot: str,
    from_intent: str,
    to_intent: str,
    age_minutes: float = 0.0,
) -> float:
    """Relevance of carrying `slot` from `from_intent` into `to_intent`."""
    if slot in USER_PREFERENCE_SLOTS:
        return USER_PREFERENCE_RELEVANCE
    if slot in WORKFLOW_STATE_SLOTS:
        return WORKFLOW_RELEVANCE
    if from_intent == to_intent:
        return SAME_INTENT_RELEVANCE

    if are_intents_related(from_intent, to_intent):
        rule = get_transition_rule(from_intent, to_intent)
        if rule is not None and slot in rule.preserve:
            return RULE_PRESERVE_RELEVANCE
        if rule is not None and slot in rule.clear:
            return RULE_CLEAR_RELEVANCE
        return RELATED_DEFAULT_RELEVANCE

    decay = max(0.0, 1.0 - age_minutes / DECAY_WINDOW_MINUTES)
    return UNRELATED_BASE_RELEVANCE * decay


def transition(
    current_slots: dict[str, str],
    from_intent: Optional[str],
    to_intent: str,
    ages: Optional[dict[str, float]] = None,
) -> dict[str, str]:
    """
    Slots that survive the move from `from_intent` to `to_intent`.

    With no prior intent (first turn) everything except workflow state is
    kept. `ages` maps slot name → minutes since it was last set.
    """
    if from_intent is None:
        return clear_workflow_state(current_slots)

    ages = ages or {}
    preserved: dict[str, str] = {}
    for slot, value in current_slots.items():
        score = context_relevance(slot, from_intent, to_intent, ages.get(slot, 0.0))
        if score >= PRESERVE_THRESHOLD:
            preserved[slot] = value
    return preserved


def clear_workflow_state(slots: dict[str, str]) -> dict[str, str]:
    return {k: v for k, v in slots.items() if k not in WORKFLOW_STATE_SLOTS}


def merge_for_turn(
    prior_slots: dict[str, str],
    new_slots: dict[str, str],
    from_intent: Optional[str],
    to_intent: str,
    ages: Optional[dict[str, float]] = None,
) -> dict[str, str]:
    """
    Context for the current turn: carried-over prior slots overlaid with
    the slots extracted from this message (new values win).
    """
    merged = transition(prior_slots, from_intent, to_intent, ages)
    merged.update({k: v for k, v in new_slots.items() if v})
    return merged


def removed_slots(before: dict[str, str], after: dict[str, str]) -> list[str]:
    """Slot names present in `before` but dropped from `after`."""
    return sorted(k for k in before if k not in after)
