"""
agent/clarifier.py — Clarifying questions

One targeted question built from the slots a turn is missing. Phrasing is
stable; tests and the consent flow match on it.
"""

from __future__ import annotations

from typing import Iterable

HELP_REPLY = (
    "I'm a travel assistant. Please share a travel question "
    "(weather, destinations, packing, or attractions)."
)

SYSTEM_REPLY = (
    "I'm Wayfarer, a travel assistant. I can check the weather for a city, suggest what "
    "to pack, point you at attractions, share country facts for destinations, and search "
    "the web for things like visa rules. Ask me something like "
    "\"What's the weather in Lisbon?\" or \"What should I pack for Tokyo in March?\""
)


def build_clarifying_question(missing: Iterable[str]) -> str:
    miss = {m.lower() for m in missing}
    if "dates" in miss and "city" in miss:
        return "Could you share the city and month/dates?"
    if "dates" in miss:
        return "Which month or travel dates?"
    if "city" in miss:
        return "Which city are you asking about?"
    return "Could you provide more details about your travel plans?"
