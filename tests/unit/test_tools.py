"""
tests/unit/test_tools.py — Fact provider adapter tests

httpx.AsyncClient is patched; no network access.

Covers:
  - weather: geocode + forecast → one-line summary; unknown city → not_found
  - country: summary fields; 404 → not_found
  - search: DuckDuckGo HTML parsing, redirect unwrapping, blocklist filtering
  - setup_tools enables only the configured adapters
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from exceptions import ToolFailure
from resilience.host_scheduler import HostLimits
from resilience.service import ResilienceService, init_resilience
from tools import setup_tools
from tools.countries import country, summarise_country
from tools.search import _clean_ddg_url, filter_blocked, parse_ddg_results, search
from tools.weather import summarise_forecast, weather


def _response(json_data=None, text: str = "", status_code: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    resp.json = MagicMock(return_value=json_data)
    resp.raise_for_status = MagicMock()
    return resp


def _client(get=None, post=None) -> AsyncMock:
    client = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    if get is not None:
        client.get = AsyncMock(side_effect=get)
    if post is not None:
        client.post = AsyncMock(side_effect=post)
    return client


_FORECAST = {
    "current": {
        "temperature_2m": 18.2, "apparent_temperature": 17.0,
        "weather_code": 2, "wind_speed_10m": 12.0,
    },
    "daily": {
        "time": ["2026-06-01", "2026-06-02", "2026-06-03"],
        "temperature_2m_max": [21.0, 23.5, 19.0],
        "temperature_2m_min": [14.0, 15.0, 13.5],
        "weather_code": [2, 0, 61],
    },
}

_DDG_HTML = """
<div class="result">
  <h2 class="result__title">
    <a href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fwww.japan.travel%2Fvisa&rut=abc">Japan Visa Info</a>
  </h2>
  <a class="result__snippet">Visa-free stays of up to 90 days</a>
</div>
<div class="result">
  <h2 class="result__title"><a href="https://spam.example.com/visa">Cheap visas</a></h2>
</div>
<div class="result"><span>no title link</span></div>
<div class="result">
  <h2 class="result__title"><a href="/relative/path">Relative</a></h2>
</div>
"""


# ─────────────────────────────────────────────────────────────────────────────
# Weather
# ─────────────────────────────────────────────────────────────────────────────


class TestWeather:

    def test_summary(self):
        summary = summarise_forecast("Lisbon, Portugal", _FORECAST)
        assert summary.startswith(
            "Lisbon, Portugal: Partly cloudy, 18.2°C (feels like 17.0°C), wind 12.0 km/h"
        )
        assert "next days: 2026-06-02 Clear sky 15.0–23.5°C; 2026-06-03 Slight rain 13.5–19.0°C" in summary

    def test_unknown_code(self):
        assert "Code 42" in summarise_forecast("X", {"current": {"weather_code": 42}})

    @pytest.mark.asyncio
    async def test_fetch(self):
        geo = _response({"results": [{"name": "Lisbon", "country": "Portugal",
                                      "latitude": 38.7, "longitude": -9.1}]})
        client = _client(get=[geo, _response(_FORECAST)])
        with patch("httpx.AsyncClient", return_value=client):
            fact = await weather(city="Lisbon", month="June")

        assert fact.source == "Open-Meteo"
        assert fact.key == "weather:Lisbon"
        assert fact.value.startswith("Lisbon, Portugal: Partly cloudy")
        assert fact.value.endswith("(live forecast; requested period: June)")
        assert "latitude=38.7" in fact.url

    @pytest.mark.asyncio
    async def test_unknown_city(self):
        client = _client(get=[_response({"results": []})])
        with patch("httpx.AsyncClient", return_value=client):
            with pytest.raises(ToolFailure) as exc_info:
                await weather(city="Atlantis")
        assert exc_info.value.reason == "not_found"


# ─────────────────────────────────────────────────────────────────────────────
# Country
# ─────────────────────────────────────────────────────────────────────────────


_JAPAN = {
    "name": {"common": "Japan"},
    "capital": ["Tokyo"],
    "region": "Asia",
    "subregion": "Eastern Asia",
    "currencies": {"JPY": {"name": "Japanese yen", "symbol": "¥"}},
    "languages": {"jpn": "Japanese"},
    "timezones": ["UTC+09:00"],
}


class TestCountry:

    def test_summary(self):
        assert summarise_country(_JAPAN) == (
            "Japan: capital Tokyo; region Eastern Asia; currencies Japanese yen (JPY); "
            "languages Japanese; timezones UTC+09:00"
        )

    def test_missing_fields(self):
        summary = summarise_country({"name": {"common": "Nowhere"}})
        assert summary == (
            "Nowhere: capital n/a; region n/a; currencies n/a; languages n/a; timezones n/a"
        )

    @pytest.mark.asyncio
    async def test_fetch(self):
        client = _client(get=[_response([_JAPAN])])
        with patch("httpx.AsyncClient", return_value=client):
            fact = await country(name="Japan")
        assert fact.source == "REST Countries"
        assert fact.value.startswith("Japan: capital Tokyo")
        assert fact.url == "https://restcountries.com/v3.1/name/Japan"

    @pytest.mark.asyncio
    async def test_not_found(self):
        client = _client(get=[_response(status_code=404)])
        with patch("httpx.AsyncClient", return_value=client):
            with pytest.raises(ToolFailure) as exc_info:
                await country(name="Atlantis")
        assert exc_info.value.reason == "not_found"


# ─────────────────────────────────────────────────────────────────────────────
# Search
# ─────────────────────────────────────────────────────────────────────────────


class TestSearch:

    def test_parse_results(self):
        results = parse_ddg_results(_DDG_HTML, 10)
        assert results == [
            {"title": "Japan Visa Info", "url": "https://www.japan.travel/visa",
             "snippet": "Visa-free stays of up to 90 days"},
            {"title": "Cheap visas", "url": "https://spam.example.com/visa", "snippet": ""},
        ]

    def test_parse_respects_limit(self):
        assert len(parse_ddg_results(_DDG_HTML, 1)) == 1

    def test_clean_url(self):
        assert _clean_ddg_url("/l/?uddg=https%3A%2F%2Fa.com%2Fx") == "https://a.com/x"
        assert _clean_ddg_url("https://b.com") == "https://b.com"
        assert _clean_ddg_url("") is None
        assert _clean_ddg_url("/relative") is None

    def test_filter_explicit_blocklist(self):
        results = parse_ddg_results(_DDG_HTML, 10)
        kept = filter_blocked(results, {"spam.example.com"})
        assert [r["title"] for r in kept] == ["Japan Visa Info"]

    def test_filter_without_resilience_keeps_everything(self):
        results = parse_ddg_results(_DDG_HTML, 10)
        assert filter_blocked(results) == results

    def test_filter_uses_installed_blocklist(self):
        svc = ResilienceService(host_resolver=lambda host: HostLimits(min_time_ms=0))
        svc.blocklist.block("spam.example.com")
        init_resilience(service=svc)
        kept = filter_blocked(parse_ddg_results(_DDG_HTML, 10))
        assert [r["title"] for r in kept] == ["Japan Visa Info"]

    @pytest.mark.asyncio
    async def test_fetch(self):
        client = _client(post=[_response(text=_DDG_HTML)])
        with patch("httpx.AsyncClient", return_value=client):
            fact = await search(query="Japan visa", max_results=1)
        assert fact.source == "Web Search"
        assert fact.value == [{"title": "Japan Visa Info", "url": "https://www.japan.travel/visa",
                               "snippet": "Visa-free stays of up to 90 days"}]
        assert fact.url == "https://www.japan.travel/visa"

    @pytest.mark.asyncio
    async def test_no_results_is_unusable_fact(self):
        client = _client(post=[_response(text="<html></html>")])
        with patch("httpx.AsyncClient", return_value=client):
            fact = await search(query="zzzz")
        assert fact.value == []
        assert not fact.is_usable


class TestSetupTools:

    def test_only_enabled_adapters_listed(self):
        registry = setup_tools(["weather", "country"])
        try:
            assert set(registry.list_names()) == {"weather", "country"}
            assert registry.get_schema("search").host == "html.duckduckgo.com"
        finally:
            setup_tools()
