"""
brain/__init__.py — Wayfarer LLM Brain

Provider clients (OpenAI, Ollama), the retry/failover wrapper and the
structured-completion helpers the router, planner, blender and verifier
use. LLMClientFactory.from_settings builds the client main.py hands to
WayfarerService; without a usable provider the service runs its
deterministic paths instead.
"""

from __future__ import annotations

from typing import Optional

from brain.llm_client import (
    BaseLLMClient,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
    ResilientLLMClient,
    RetryPolicy,
)
from brain.structured import complete, extract_json
from brain.types import (
    FinishReason,
    LLMConfig,
    LLMResponse,
    Message,
    Provider,
    ResponseFormat,
    Role,
    TokenUsage,
)
from observability.logger import get_logger

log = get_logger(__name__)

__all__ = [
    "LLMClientFactory",
    "BaseLLMClient",
    "ResilientLLMClient",
    "RetryPolicy",
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
    "Message",
    "LLMConfig",
    "LLMResponse",
    "TokenUsage",
    "Role",
    "Provider",
    "FinishReason",
    "ResponseFormat",
    "complete",
    "extract_json",
]

_DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-4o-mini",
    "ollama": "llama3.1",
}


class LLMClientFactory:

    @staticmethod
    def create(
        provider: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> BaseLLMClient:
        provider = provider.lower().strip()

        if provider == "openai":
            if not api_key:
                raise LLMConnectionError("OPENAI_API_KEY is required", provider="openai")
            from brain.openai_client import OpenAIClient
            return OpenAIClient(api_key=api_key, base_url=base_url)

        if provider == "ollama":
            from brain.ollama_client import OllamaClient
            return OllamaClient(base_url=base_url or "http://localhost:11434/v1")

        raise ValueError(f"Unknown LLM provider: '{provider}'. Valid options: openai, ollama")

    @staticmethod
    def from_settings(settings) -> ResilientLLMClient:
        """
        Primary provider from settings.llm.default_provider, fallbacks from
        settings.llm.fallback_providers (duplicates of the primary and
        providers that cannot be built are skipped with a warning), all
        under settings.llm.retry. Raises if the primary cannot be built.
        """
        provider = settings.default_llm_provider
        credentials = {
            "openai": (settings.openai_api_key, settings.openai_base_url),
            "ollama": (None, settings.ollama_base_url_v1),
        }

        def build(name: str) -> BaseLLMClient:
            api_key, base_url = credentials.get(name, (None, None))
            return LLMClientFactory.create(provider=name, api_key=api_key, base_url=base_url)

        primary = build(provider)

        fallbacks: list[BaseLLMClient] = []
        for name in dict.fromkeys(fp.lower().strip() for fp in settings.llm.fallback_providers):
            if name == provider:
                continue
            try:
                fallbacks.append(build(name))
            except (LLMConnectionError, ValueError) as e:
                log.warning("llm.fallback_skipped", provider=name, error=str(e))

        return ResilientLLMClient(
            primary=primary,
            fallbacks=fallbacks,
            policy=RetryPolicy.from_config(settings.llm.retry),
        )

    @staticmethod
    def default_model(provider: str) -> str:
        return _DEFAULT_MODELS.get(provider.lower(), "gpt-4o-mini")
