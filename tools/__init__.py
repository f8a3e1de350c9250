"""
tools/__init__.py — Wayfarer Tool System

Public interface for the fact-provider tools.

Usage:
    from tools import setup_tools, registry, ToolBus

    setup_tools(["weather", "country", "search"])   # registers the adapters
    bus = ToolBus(registry, get_resilience())

    outcome = await bus.dispatch(ToolCall(id="c1", name="weather", arguments={"city": "Oslo"}))
"""

from __future__ import annotations

import importlib
from typing import Iterable, Optional

from tools.args import CountryArgs, SearchArgs, WeatherArgs, parse_tool_args
from tools.tool_bus import ToolBus
from tools.tool_registry import ToolRegistry, registry
from tools.types import Fact, ToolCall, ToolOutcome, ToolSchema

__all__ = [
    "registry",
    "setup_tools",
    "ToolBus",
    "ToolRegistry",
    # Types
    "Fact",
    "ToolCall",
    "ToolOutcome",
    "ToolSchema",
    "WeatherArgs",
    "CountryArgs",
    "SearchArgs",
    "parse_tool_args",
]

_ADAPTER_MODULES = {
    "weather": "tools.weather",
    "country": "tools.countries",
    "search": "tools.search",
}


def setup_tools(enabled: Optional[Iterable[str]] = None) -> ToolRegistry:
    """
    Import and register the built-in adapters, then disable any not listed.

    Call once at startup before creating the ToolBus.
    Importing an adapter module registers it.
    """
    names = set(enabled) if enabled is not None else set(_ADAPTER_MODULES)
    for module in _ADAPTER_MODULES.values():
        importlib.import_module(module)
    for name in _ADAPTER_MODULES:
        if name in names:
            registry.enable(name)
        else:
            registry.disable(name)
    return registry
