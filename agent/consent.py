"""
agent/consent.py — Web-search consent workflow

When a policy or web question produced no facts, the reply offers a web
search and the thread remembers the offer in workflow-state slots. The
next message is checked for a yes/no before normal routing.

Workflow slots are consumed once: any answer (yes, no or unrelated)
clears them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

YES_WORDS = (
    "yes", "y", "yeah", "yep", "sure", "ok", "okay", "please do", "please",
    "go ahead", "do it", "proceed", "continue", "search",
)
NO_WORDS = ("no", "n", "nope", "nah", "skip", "pass", "cancel", "no thanks", "don't")

# Consent kind → (awaiting flag slot, pending query slot)
CONSENT_SLOTS: dict[str, tuple[str, str]] = {
    "web": ("awaiting_search_consent", "pending_search_query"),
    "deep": ("awaiting_deep_research_consent", "pending_deep_research_query"),
    "web_after_rag": ("awaiting_web_search_consent", "pending_web_search_query"),
}

OFFER_TEXT = "Would you like me to search the web for up-to-date information on this? (yes/no)"
DECLINED_TEXT = "No problem. Let me know if there's anything else I can help with for your trip."


class ConsentVerdict(str, Enum):
    YES = "yes"
    NO = "no"
    UNCLEAR = "unclear"


@dataclass(frozen=True)
class ConsentState:
    awaiting: bool = False
    kind: str = ""
    pending: str = ""


def classify_consent(message: str) -> ConsentVerdict:
    lower = message.strip().lower().rstrip("!.")
    if not lower:
        return ConsentVerdict.UNCLEAR
    if any(lower == w or lower.startswith(f"{w} ") or lower.startswith(f"{w},") for w in NO_WORDS):
        return ConsentVerdict.NO
    if any(lower == w or lower.startswith(f"{w} ") or lower.startswith(f"{w},") for w in YES_WORDS):
        return ConsentVerdict.YES
    return ConsentVerdict.UNCLEAR


def read_consent_state(slots: dict[str, str]) -> ConsentState:
    for kind, (flag, pending) in CONSENT_SLOTS.items():
        if slots.get(flag) == "true":
            return ConsentState(awaiting=True, kind=kind, pending=slots.get(pending, ""))
    return ConsentState()


def consent_patch(kind: str = "", pending: str = "") -> dict[str, str]:
    """
    Slot patch that clears every consent flag and, when `kind` is given,
    sets that one. Empty values remove the slot in the store.
    """
    patch = {slot: "" for pair in CONSENT_SLOTS.values() for slot in pair}
    if kind:
        flag, pending_slot = CONSENT_SLOTS[kind]
        patch[flag] = "true"
        patch[pending_slot] = pending
    return patch
