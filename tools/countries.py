"""
tools/countries.py — Country Facts Tool

Capital, region, currencies, languages and timezones from REST Countries.
No API key required.

Registered tools:
  - country → Fact(source="REST Countries", key="country:<name>")
"""

from __future__ import annotations

import urllib.parse

import httpx

from exceptions import ToolFailure
from observability.logger import get_logger
from tools.tool_registry import registry
from tools.types import Fact

log = get_logger(__name__)

_BASE_URL = "https://restcountries.com/v3.1/name/"
_FIELDS = "name,capital,region,subregion,currencies,languages,timezones,population"
_SOURCE = "REST Countries"
_TIMEOUT = 10.0


@registry.register(
    name="country",
    description=(
        "Basic facts about a country: capital, region, currencies, languages, timezones. "
        "Use for destination overviews."
    ),
    source=_SOURCE,
    host="restcountries.com",
    parameters={
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Country name, e.g. 'Japan'"},
        },
        "required": ["name"],
    },
)
async def country(name: str) -> Fact:
    url = _BASE_URL + urllib.parse.quote(name)
    async with httpx.AsyncClient(timeout=_TIMEOUT) as client:
        resp = await client.get(url, params={"fields": _FIELDS})
        if resp.status_code == 404:
            raise ToolFailure("country", f"Country not found: '{name}'", reason="not_found")
        resp.raise_for_status()
        data = resp.json()

    if not data:
        raise ToolFailure("country", f"Country not found: '{name}'", reason="not_found")

    log.debug("country.fetched", name=name, matches=len(data))
    return Fact(
        source=_SOURCE,
        key=f"country:{name}",
        value=summarise_country(data[0]),
        url=url,
    )


def summarise_country(entry: dict) -> str:
    common = entry.get("name", {}).get("common", "")
    capital = ", ".join(entry.get("capital") or []) or "n/a"
    region = entry.get("subregion") or entry.get("region") or "n/a"
    currencies = ", ".join(
        f"{c.get('name', code)} ({code})" for code, c in (entry.get("currencies") or {}).items()
    ) or "n/a"
    languages = ", ".join((entry.get("languages") or {}).values()) or "n/a"
    timezones = ", ".join(entry.get("timezones") or []) or "n/a"
    return (
        f"{common}: capital {capital}; region {region}; currencies {currencies}; "
        f"languages {languages}; timezones {timezones}"
    )
