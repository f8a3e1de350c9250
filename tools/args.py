"""
tools/args.py — Tool Argument Schemas

Every tool's arguments are one member of a tagged union discriminated by
`tool`. Planner output is validated into this union before anything is
dispatched, so an unknown tool name or a malformed argument set never
reaches an adapter.
"""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from exceptions import ToolValidationError, UnknownToolError


class _ToolArgs(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    def kwargs(self) -> dict:
        """Handler keyword arguments (everything except the tag)."""
        return self.model_dump(exclude={"tool"}, exclude_none=True)


class WeatherArgs(_ToolArgs):
    tool: Literal["weather"] = "weather"
    city: str = Field(min_length=1, max_length=100)
    month: Optional[str] = None
    dates: Optional[str] = None

    @field_validator("city")
    @classmethod
    def _no_digits(cls, v: str) -> str:
        if any(ch.isdigit() for ch in v):
            raise ValueError("city must not contain digits")
        return v


class CountryArgs(_ToolArgs):
    tool: Literal["country"] = "country"
    name: str = Field(min_length=2, max_length=100)


class SearchArgs(_ToolArgs):
    tool: Literal["search"] = "search"
    query: str = Field(min_length=1, max_length=300)
    max_results: int = Field(default=5, ge=1, le=10)


ToolArgs = Annotated[
    Union[WeatherArgs, CountryArgs, SearchArgs],
    Field(discriminator="tool"),
]

_ADAPTER: TypeAdapter = TypeAdapter(ToolArgs)

KNOWN_TOOLS: frozenset[str] = frozenset({"weather", "country", "search"})


def parse_tool_args(name: str, arguments: Optional[dict]) -> Union[WeatherArgs, CountryArgs, SearchArgs]:
    """
    Validate (name, arguments) into the tagged union.

    Raises:
        UnknownToolError:     name is not one of the known tools.
        ToolValidationError:  arguments do not fit the tool's schema.
    """
    if name not in KNOWN_TOOLS:
        raise UnknownToolError(name)
    payload = dict(arguments or {})
    payload["tool"] = name
    try:
        return _ADAPTER.validate_python(payload)
    except ValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != name)
        raise ToolValidationError(name, f"{loc or 'args'}: {first.get('msg', 'invalid')}") from e
