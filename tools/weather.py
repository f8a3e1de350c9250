"""
tools/weather.py — Weather Tool

Current conditions and a short forecast from Open-Meteo.
Free, no API key; the city is geocoded first, then the forecast is fetched.

Registered tools:
  - weather → Fact(source="Open-Meteo", key="weather:<city>")
"""

from __future__ import annotations

from typing import Optional

import httpx

from exceptions import ToolFailure
from observability.logger import get_logger
from tools.tool_registry import registry
from tools.types import Fact

log = get_logger(__name__)

_GEOCODE_URL = "https://geocoding-api.open-meteo.com/v1/search"
_WEATHER_URL = "https://api.open-meteo.com/v1/forecast"
_SOURCE = "Open-Meteo"
_TIMEOUT = 10.0

_WMO_CODES = {
    0: "Clear sky", 1: "Mainly clear", 2: "Partly cloudy", 3: "Overcast",
    45: "Foggy", 48: "Icy fog",
    51: "Light drizzle", 53: "Moderate drizzle", 55: "Dense drizzle",
    61: "Slight rain", 63: "Moderate rain", 65: "Heavy rain",
    71: "Slight snow", 73: "Moderate snow", 75: "Heavy snow",
    80: "Slight showers", 81: "Moderate showers", 82: "Violent showers",
    95: "Thunderstorm", 96: "Thunderstorm with hail", 99: "Thunderstorm with heavy hail",
}


@registry.register(
    name="weather",
    description=(
        "Current weather and a 3-day forecast for a city. "
        "Use for weather questions and for packing advice that depends on conditions."
    ),
    source=_SOURCE,
    host="api.open-meteo.com",
    parameters={
        "type": "object",
        "properties": {
            "city": {"type": "string", "description": "City name, e.g. 'Lisbon'"},
            "month": {"type": "string", "description": "Travel month, if the user gave one"},
            "dates": {"type": "string", "description": "Travel dates, if the user gave them"},
        },
        "required": ["city"],
    },
)
async def weather(city: str, month: Optional[str] = None, dates: Optional[str] = None) -> Fact:
    async with httpx.AsyncClient(timeout=_TIMEOUT) as client:
        geo_resp = await client.get(
            _GEOCODE_URL,
            params={"name": city, "count": 1, "language": "en", "format": "json"},
        )
        geo_resp.raise_for_status()
        results = geo_resp.json().get("results") or []
        if not results:
            raise ToolFailure("weather", f"Location not found: '{city}'", reason="not_found")
        place = results[0]

        wx_resp = await client.get(
            _WEATHER_URL,
            params={
                "latitude": place["latitude"],
                "longitude": place["longitude"],
                "current": ["temperature_2m", "apparent_temperature", "weather_code", "wind_speed_10m"],
                "daily": ["temperature_2m_max", "temperature_2m_min", "weather_code", "precipitation_sum"],
                "forecast_days": 4,
                "timezone": "auto",
            },
        )
        wx_resp.raise_for_status()
        wx = wx_resp.json()

    name = ", ".join(p for p in (place.get("name", city), place.get("country", "")) if p)
    summary = summarise_forecast(name, wx)
    if month or dates:
        summary += f" (live forecast; requested period: {month or dates})"

    log.debug("weather.fetched", city=city, resolved=name)
    return Fact(
        source=_SOURCE,
        key=f"weather:{city}",
        value=summary,
        url=f"https://open-meteo.com/en/docs#latitude={place['latitude']}&longitude={place['longitude']}",
    )


def summarise_forecast(location: str, wx: dict) -> str:
    """One-line summary of an Open-Meteo forecast response."""
    current = wx.get("current", {})
    daily = wx.get("daily", {})

    code = int(current.get("weather_code", 0))
    parts = [
        f"{location}: {_WMO_CODES.get(code, f'Code {code}')}, "
        f"{current.get('temperature_2m')}°C (feels like {current.get('apparent_temperature')}°C), "
        f"wind {current.get('wind_speed_10m')} km/h"
    ]

    days = daily.get("time", [])
    highs = daily.get("temperature_2m_max", [])
    lows = daily.get("temperature_2m_min", [])
    codes = daily.get("weather_code", [])
    outlook = []
    for i in range(1, min(len(days), len(highs), len(lows), len(codes))):
        outlook.append(f"{days[i]} {_WMO_CODES.get(int(codes[i]), 'n/a')} {lows[i]}–{highs[i]}°C")
    if outlook:
        parts.append("next days: " + "; ".join(outlook))
    return ". ".join(parts)
