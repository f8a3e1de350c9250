"""
tools/tool_registry.py — Fact-provider registry

Maps a tool name to its ToolSchema (citation source label, upstream host,
planner-facing parameter schema) and its async handler. Adapter modules
register at import time through the module-level `registry`:

    @registry.register(name="country", description="...", source="REST Countries",
                       host="restcountries.com", parameters={...})
    async def country(name: str) -> Fact: ...

Disabled tools stay registered (the ToolBus reports them as unknown_tool)
but are hidden from the planner prompt.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from observability.logger import get_logger
from tools.types import ToolSchema

log = get_logger(__name__)


class ToolRegistry:

    def __init__(self):
        self._schemas: dict[str, ToolSchema] = {}
        self._handlers: dict[str, Callable] = {}

    def register(
        self,
        name: str,
        description: str,
        source: str,
        host: Optional[str] = None,
        parameters: Optional[dict[str, Any]] = None,
        enabled: bool = True,
    ) -> Callable:
        """Decorator form of register_tool; returns the handler unchanged."""
        def decorator(fn: Callable) -> Callable:
            schema = ToolSchema(name=name, description=description, source=source, host=host, enabled=enabled)
            if parameters is not None:
                schema.parameters = parameters
            self.register_tool(schema, fn)
            return fn

        return decorator

    def register_tool(self, schema: ToolSchema, handler: Callable) -> None:
        if schema.name in self._schemas:
            log.debug("tool.replaced", tool=schema.name)
        self._schemas[schema.name] = schema
        self._handlers[schema.name] = handler
        log.debug("tool.registered", tool=schema.name, source=schema.source, host=schema.host)

    def get_schema(self, name: str) -> Optional[ToolSchema]:
        return self._schemas.get(name)

    def get_handler(self, name: str) -> Optional[Callable]:
        return self._handlers.get(name)

    def is_registered(self, name: str) -> bool:
        return name in self._schemas

    def list_names(self, enabled_only: bool = True) -> list[str]:
        return [name for name, s in self._schemas.items() if s.enabled or not enabled_only]

    def to_llm_schemas(self) -> list[dict[str, Any]]:
        """Enabled tools in the shape the planner prompt lists."""
        return [s.to_llm_schema() for s in self._schemas.values() if s.enabled]

    def enable(self, name: str) -> None:
        self._set_enabled(name, True)

    def disable(self, name: str) -> None:
        self._set_enabled(name, False)

    def _set_enabled(self, name: str, enabled: bool) -> None:
        schema = self._schemas.get(name)
        if schema is not None and schema.enabled != enabled:
            schema.enabled = enabled
            log.info("tool.enabled" if enabled else "tool.disabled", tool=name)

    def __repr__(self) -> str:
        return f"<ToolRegistry tools={list(self._schemas)}>"


# Adapter modules import this to self-register
registry = ToolRegistry()
