"""
brain/openai_client.py — OpenAI Client

Chat completions against api.openai.com or any OpenAI-compatible endpoint
(Ollama's /v1, vLLM, LiteLLM). The planner, verifier and router ask for
JSON-object mode; the blender asks for plain text.

SDK errors are normalised into the brain error taxonomy so
ResilientLLMClient can tell transient failures (retry, fail over) from
permanent ones:
    401 / connection / timeout / 5xx  → LLMConnectionError
    429                               → LLMRateLimitError (retry-after header)
    400 context overflow              → LLMContextError
    other 400                         → LLMInvalidRequestError
"""

from __future__ import annotations

from typing import Optional

import openai
from openai import AsyncOpenAI

from brain.llm_client import (
    BaseLLMClient,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)
from brain.types import (
    FinishReason,
    LLMConfig,
    LLMResponse,
    Message,
    Provider,
    ResponseFormat,
    TokenUsage,
)
from observability.logger import get_logger

log = get_logger(__name__)

_CONTEXT_MARKERS = ("maximum context length", "context_length_exceeded", "too long")
_FINISH = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.ERROR,
}


def _retry_after(error: openai.APIStatusError) -> Optional[float]:
    headers = getattr(error.response, "headers", None)
    if headers is None:
        return None
    try:
        value = headers.get("retry-after")
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class OpenAIClient(BaseLLMClient):

    provider = Provider.OPENAI

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,     # None = official OpenAI endpoint
        organization: Optional[str] = None,
    ):
        super().__init__(api_key=api_key, base_url=base_url)
        # ResilientLLMClient owns retries; the SDK's own retry loop would
        # stretch a single planning call past its deadline
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            organization=organization,
            max_retries=0,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.provider.value}>"

    async def generate(self, messages: list[Message], config: LLMConfig) -> LLMResponse:
        payload = [{"role": m.role.value, "content": m.content} for m in messages]
        response_format = (
            {"type": "json_object"}
            if config.response_format == ResponseFormat.JSON
            else openai.NOT_GIVEN
        )
        name = self.provider.value

        try:
            response = await self._client.chat.completions.create(
                model=config.model,
                messages=payload,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                top_p=config.top_p,
                response_format=response_format,
                timeout=config.timeout_seconds,
            )
        except openai.AuthenticationError as e:
            raise LLMConnectionError(str(e), provider=name, status_code=401) from e
        except openai.RateLimitError as e:
            raise LLMRateLimitError(str(e), provider=name, retry_after=_retry_after(e)) from e
        except openai.BadRequestError as e:
            text = str(e).lower()
            if any(marker in text for marker in _CONTEXT_MARKERS):
                raise LLMContextError(str(e), provider=name, status_code=400) from e
            raise LLMInvalidRequestError(str(e), provider=name, status_code=400) from e
        except (openai.APIConnectionError, openai.APITimeoutError) as e:
            raise LLMConnectionError(str(e), provider=name) from e
        except openai.InternalServerError as e:
            raise LLMConnectionError(str(e), provider=name, status_code=e.status_code) from e
        except openai.APIError as e:
            raise LLMError(str(e), provider=name, status_code=getattr(e, "status_code", None)) from e

        result = self._to_response(response)
        log.debug(
            "openai.generate",
            model=result.model,
            json_mode=config.response_format == ResponseFormat.JSON,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
            finish_reason=result.finish_reason.value,
        )
        return result

    async def health_check(self) -> bool:
        try:
            await self._client.models.list()
            return True
        except (openai.APIError, OSError) as e:
            log.warning("openai.health_check_failed", error=str(e), error_type=type(e).__name__)
            return False

    def _to_response(self, response) -> LLMResponse:
        choice = response.choices[0]
        usage = response.usage
        return LLMResponse(
            content=choice.message.content,
            finish_reason=_FINISH.get(choice.finish_reason or "stop", FinishReason.STOP),
            usage=TokenUsage(
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
            ),
            model=response.model,
            provider=self.provider,
        )
