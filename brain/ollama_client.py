"""
brain/ollama_client.py — Ollama Local LLM Client

Runs any model served by Ollama (llama3.1, mistral, qwen2.5, ...). Ollama
exposes an OpenAI-compatible endpoint at /v1/, so generation reuses
OpenAIClient; the health check hits Ollama's native /api/tags with httpx.
"""

from __future__ import annotations

import httpx

from brain.llm_client import LLMConnectionError
from brain.openai_client import OpenAIClient
from brain.types import LLMConfig, LLMResponse, Message, Provider
from observability.logger import get_logger

log = get_logger(__name__)

_DEFAULT_BASE_URL = "http://localhost:11434/v1"


class OllamaClient(OpenAIClient):
    """
    No API key required. Requires `ollama serve` to be running.
    Set base_url if Ollama is on a non-standard host/port.
    """

    provider = Provider.OLLAMA

    def __init__(self, base_url: str = _DEFAULT_BASE_URL):
        super().__init__(api_key="ollama", base_url=base_url)

    async def generate(self, messages: list[Message], config: LLMConfig) -> LLMResponse:
        try:
            return await super().generate(messages, config)
        except LLMConnectionError as e:
            raise LLMConnectionError(
                f"Cannot reach Ollama at {self.base_url}. Is `ollama serve` running?",
                provider="ollama",
            ) from e

    async def health_check(self) -> bool:
        root = (self.base_url or _DEFAULT_BASE_URL).rstrip("/").removesuffix("/v1")
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{root}/api/tags")
                resp.raise_for_status()
            models = [m.get("name") for m in resp.json().get("models", [])]
            log.debug("ollama.health_check.ok", available_models=models)
            return True
        except (httpx.HTTPError, ValueError) as e:
            log.warning("ollama.health_check.failed", error=str(e))
            return False
