"""
agent/slots.py — Slot extraction and normalisation

Pattern-based extraction of the travel slots a message carries
(city, origin/destination, month, dates, passengers, cabin class) and the
normalisation pass that keeps placeholder and polluted values out of
thread state.
"""

from __future__ import annotations

import re
from typing import Optional

MONTHS = (
    "january", "february", "march", "april", "may", "june", "july",
    "august", "september", "october", "november", "december",
)
_MONTH_ABBR = {m[:3]: m for m in MONTHS}
_MONTH_ABBR["sept"] = "september"

_MONTH_RE = re.compile(
    r"\b(" + "|".join(MONTHS) + r"|jan|feb|mar|apr|jun|jul|aug|sept|sep|oct|nov|dec)\b",
    re.IGNORECASE,
)
_MONTH_DAY_RE = re.compile(
    r"\b(?:(" + "|".join(MONTHS) + r"|jan|feb|mar|apr|jun|jul|aug|sept|sep|oct|nov|dec)\.?\s+(\d{1,2})(?:st|nd|rd|th)?"
    r"|(\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?(" + "|".join(MONTHS) + r"|jan|feb|mar|apr|jun|jul|aug|sept|sep|oct|nov|dec))\b",
    re.IGNORECASE,
)
_RELATIVE_DATE_RE = re.compile(
    r"\b(today|tonight|tomorrow|this (?:week|weekend|month)|next (?:week|weekend|month))\b",
    re.IGNORECASE,
)
_NUMERIC_DATE_RE = re.compile(r"\b\d{1,2}[-/]\d{1,2}(?:[-/]\d{2,4})?\b")

# Capitalised words after a preposition; up to three words ("New York City")
_PROPER = r"([A-Z][A-Za-z'\-]+(?:\s+[A-Z][A-Za-z'\-]+){0,2})"
_CITY_RE = re.compile(r"\b(?:in|to|for|at|about|visit|visiting)\s+" + _PROPER)
_ORIGIN_RE = re.compile(r"\b(?:from|ex|leaving)\s+" + _PROPER)
_DEST_RE = re.compile(r"\b(?:to|into)\s+" + _PROPER)
_IATA_PAIR_RE = re.compile(r"\b([A-Z]{3})\s*(?:to|→|-?>)\s*([A-Z]{3})\b")

_PASSENGERS_RE = re.compile(
    r"\b(\d{1,2}|one|two|three|four|five|six|seven|eight|nine)\s+"
    r"(?:passengers?|people|persons?|travell?ers|adults?)\b",
    re.IGNORECASE,
)
_CABIN_RE = re.compile(r"\b(economy|premium economy|business|first)(?:\s+class)?\b", re.IGNORECASE)
_WORD_NUMBERS = {
    "one": "1", "two": "2", "three": "3", "four": "4", "five": "5",
    "six": "6", "seven": "7", "eight": "8", "nine": "9",
}

# Words that can follow a preposition in capitalised form but are not places
_NOT_PLACES = frozenset({
    "i", "me", "my", "the", "a", "an", "it", "what", "which", "how", "when", "where",
    "today", "tomorrow", "tonight", "now", "next", "this", "week", "weekend", "month",
    "summer", "winter", "spring", "fall", "autumn",
    *MONTHS, *_MONTH_ABBR.keys(),
})

PLACEHOLDER_VALUES = frozenset({"unknown", "there", "clean_city_name", "normalized_name"})
DATE_PLACEHOLDERS = frozenset({"unknown", "next week", "normalized_date_string", "month_name"})
GENERIC_PLACE_WORDS = ("city", "destination", "place")

CITY_ALIASES = {
    "NYC": "New York",
    "SF": "San Francisco",
    "LA": "Los Angeles",
}

_CITY_KEYS = ("city", "originCity", "destinationCity")
_DATE_KEYS = ("month", "dates", "departureDate", "returnDate")


# ─────────────────────────────────────────────────────────────────────────────
# Extraction
# ─────────────────────────────────────────────────────────────────────────────


def _clean_place(raw: str) -> Optional[str]:
    words = []
    for word in raw.split():
        if word.lower() in _NOT_PLACES:
            break
        words.append(word)
    if not words:
        return None
    place = " ".join(words).strip(" .,'-")
    return CITY_ALIASES.get(place, place) or None


def _first_place(pattern: re.Pattern, text: str) -> Optional[str]:
    for match in pattern.finditer(text):
        place = _clean_place(match.group(1))
        if place:
            return place
    return None


def extract_month(text: str) -> Optional[str]:
    for match in _MONTH_RE.finditer(text):
        # lowercase "may" is almost always the verb
        if match.group(1) == "may":
            continue
        token = match.group(1).lower()
        return _MONTH_ABBR.get(token, token).capitalize()
    return None


def extract_dates(text: str) -> Optional[str]:
    for pattern in (_MONTH_DAY_RE, _NUMERIC_DATE_RE, _RELATIVE_DATE_RE):
        match = pattern.search(text)
        if match:
            return match.group(0).strip()
    return None


def extract_slots(text: str) -> dict[str, str]:
    """
    Slots mentioned in one message. Only keys actually found are returned;
    no normalisation is applied here.
    """
    slots: dict[str, str] = {}

    iata = _IATA_PAIR_RE.search(text)
    if iata:
        slots["originCity"], slots["destinationCity"] = iata.group(1), iata.group(2)
    else:
        origin = _first_place(_ORIGIN_RE, text)
        if origin:
            slots["originCity"] = origin
        dest = _first_place(_DEST_RE, text)
        if dest and dest != origin:
            slots["destinationCity"] = dest

    city = _first_place(_CITY_RE, text)
    if slots.get("destinationCity"):
        slots["city"] = slots["destinationCity"]
    elif city and city != slots.get("originCity"):
        slots["city"] = city

    month = extract_month(text)
    if month:
        slots["month"] = month
    dates = extract_dates(text)
    if dates:
        slots["dates"] = dates
    if (dates or month) and ("originCity" in slots or "destinationCity" in slots):
        slots["departureDate"] = dates or month

    pax = _PASSENGERS_RE.search(text)
    if pax:
        n = pax.group(1).lower()
        slots["passengers"] = _WORD_NUMBERS.get(n, n)
    cabin = _CABIN_RE.search(text)
    if cabin:
        slots["cabinClass"] = cabin.group(1).lower()

    return slots


# ─────────────────────────────────────────────────────────────────────────────
# Normalisation
# ─────────────────────────────────────────────────────────────────────────────


def normalize_slots(extracted: dict[str, str], intent: Optional[str] = None) -> dict[str, str]:
    """
    Clean extracted slots before they are written to thread state.

    - strips trailing "today"/"now" from city fields; rejects city values
      with digits, placeholders or generic words ("city", "destination")
    - drops placeholder dates; for non-flight intents drops month/dates
      that only say "today"/"now"
    - weather turns never write origin/destination
    """
    safe: dict[str, str] = {}
    for key, value in extracted.items():
        if not isinstance(value, str):
            continue
        value = value.strip()
        if not value:
            continue
        lowered = value.lower()

        if key in _CITY_KEYS:
            value = re.sub(r"\b(today|now)\b", "", value, flags=re.IGNORECASE).strip()
            lowered = value.lower()
            if not value or any(ch.isdigit() for ch in value):
                continue
            if lowered in PLACEHOLDER_VALUES:
                continue
            if any(w in lowered for w in GENERIC_PLACE_WORDS):
                continue
            if key == "city" and not re.fullmatch(r"[A-Z][A-Za-z'\- ]+", value):
                continue
            safe[key] = value
            continue

        if key in _DATE_KEYS:
            if lowered in DATE_PLACEHOLDERS:
                continue
            if intent != "flights" and key in ("month", "dates") and re.search(r"\b(today|now)\b", lowered):
                continue
            safe[key] = value
            continue

        if lowered in PLACEHOLDER_VALUES:
            continue
        safe[key] = value

    if intent == "flights" and "departureDate" not in safe:
        if re.fullmatch(r"today|tomorrow|tonight", safe.get("dates", ""), flags=re.IGNORECASE):
            safe["departureDate"] = safe["dates"]

    if intent == "weather":
        safe.pop("originCity", None)
        safe.pop("destinationCity", None)

    return safe


def missing_slots(intent: str, slots: dict[str, str]) -> list[str]:
    """Slots an intent needs before a tool plan makes sense."""
    missing = []
    if intent in ("weather", "packing", "attractions") and not slots.get("city"):
        missing.append("city")
    if intent == "packing" and not (slots.get("month") or slots.get("dates")):
        missing.append("dates")
    if intent == "flights":
        if not (slots.get("originCity") and slots.get("destinationCity")):
            missing.append("city")
        if not (slots.get("departureDate") or slots.get("dates")):
            missing.append("dates")
    return missing
