"""
brain/structured.py — One-shot completion helper

The single "complete" seam every agent component uses to talk to a model:

    complete(client, config, system_prompt, user_prompt, context, response_format)
        → str                       (response_format="text")
        → dict                      (response_format="json")

Failure outcomes stay distinguishable from a well-formed answer:
  - asyncio.TimeoutError  the call exceeded `timeout`
  - LLMError subclasses   provider / transport failure
  - ToolFailure subtypes  raised by the resilience layer (breaker open, ...)
  - ValueError            JSON mode, but the model returned no JSON object

A low-confidence answer is NOT an error; callers read the confidence field.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Optional, Union

from brain.llm_client import BaseLLMClient
from brain.types import LLMConfig, Message, ResponseFormat
from observability.logger import get_logger

log = get_logger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        end = len(lines) - 1 if lines[-1].strip() == "```" else len(lines)
        text = "\n".join(lines[1:end])
    return text.strip()


def extract_json(text: str) -> dict[str, Any]:
    """
    Parse the first JSON object in a model response.
    Tolerates code fences and chatter around the object.
    """
    cleaned = strip_fences(text or "")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(cleaned)
        if not match:
            raise ValueError(f"no JSON object in model output: {cleaned[:120]!r}")
        data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _render_user(user_prompt: str, context: Optional[dict[str, Any]]) -> str:
    if not context:
        return user_prompt
    ctx = json.dumps(context, ensure_ascii=False, default=str)
    return f"Context:\n{ctx}\n\n{user_prompt}"


async def complete(
    client: BaseLLMClient,
    config: LLMConfig,
    system_prompt: str,
    user_prompt: str,
    context: Optional[dict[str, Any]] = None,
    response_format: Union[ResponseFormat, str] = ResponseFormat.TEXT,
    timeout: Optional[float] = None,
    resilience=None,
    target: str = "llm",
    **overrides: Any,
) -> Union[str, dict[str, Any]]:
    """
    Single system+user completion through the (optional) resilience layer.

    Args:
        timeout:    seconds; wraps the whole call including resilience waits.
        resilience: ResilienceService; when given, the call runs under the
                    `target` breaker and limiter.
        overrides:  LLMConfig fields for this call only (e.g. temperature=0).
    """
    fmt = ResponseFormat(response_format)
    cfg = config.derive(response_format=fmt, **overrides)
    messages = [Message.system(system_prompt), Message.user(_render_user(user_prompt, context))]

    async def _call():
        return await client.generate(messages=messages, config=cfg)

    coro = resilience.call(target, _call) if resilience is not None else _call()
    if timeout is not None:
        response = await asyncio.wait_for(coro, timeout=timeout)
    else:
        response = await coro

    if fmt == ResponseFormat.JSON:
        return extract_json(response.text)
    return response.text
