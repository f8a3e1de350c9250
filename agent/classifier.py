"""
agent/classifier.py — Local lexical intent classifier

First stage of the routing cascade. Keyword scoring only, no I/O, so it
is fast and fully deterministic. Confidence grows with the number of
distinct keyword hits and drops when two intents score the same.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_KEYWORDS: dict[str, tuple[str, ...]] = {
    "weather": (
        "weather", "temperature", "forecast", "rain", "raining", "snow", "sunny",
        "climate", "humid", "humidity", "degrees", "precipitation", "hot", "cold",
    ),
    "packing": (
        "pack", "packing", "bring", "wear", "clothes", "clothing", "luggage",
        "suitcase", "carry-on",
    ),
    "attractions": (
        "attraction", "attractions", "museum", "museums", "things to do", "do in",
        "sightseeing", "activities", "landmarks", "see in", "must see", "must-see",
    ),
    "destinations": (
        "where to go", "where should i go", "destination", "destinations", "recommend",
        "suggest", "trip ideas", "vacation ideas", "getaway", "tell me about",
    ),
    "flights": (
        "flight", "flights", "fly", "flying", "airline", "airfare", "fare", "fares",
        "one way", "round trip", "roundtrip", "layover", "nonstop",
    ),
    "irrops": (
        "delayed", "delay", "cancelled", "canceled", "missed connection", "rebook",
        "rebooking", "disruption", "diverted",
    ),
}

_PATTERNS: dict[str, list[re.Pattern]] = {
    intent: [re.compile(r"\b" + re.escape(k) + r"\b", re.IGNORECASE) for k in kws]
    for intent, kws in _KEYWORDS.items()
}

BASE_CONFIDENCE = 0.6
PER_HIT = 0.15
MAX_CONFIDENCE = 0.95
TIE_PENALTY = 0.2
NO_MATCH_CONFIDENCE = 0.3


@dataclass(frozen=True)
class Classification:
    intent: str
    confidence: float
    hits: int = 0


def score(message: str) -> dict[str, int]:
    """Distinct keyword hits per intent."""
    return {
        intent: sum(1 for p in patterns if p.search(message))
        for intent, patterns in _PATTERNS.items()
    }


def classify(message: str) -> Classification:
    scores = score(message)
    ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
    best_intent, best = ranked[0]
    if best == 0:
        return Classification("unknown", NO_MATCH_CONFIDENCE, 0)

    confidence = min(MAX_CONFIDENCE, BASE_CONFIDENCE + PER_HIT * best)
    if len(ranked) > 1 and ranked[1][1] == best:
        confidence -= TIE_PENALTY
    return Classification(best_intent, round(confidence, 2), best)
