"""
tests/unit/test_brain.py — LLM Client Unit Tests

Tests the brain layer with the provider SDK mocked out: message and
config models, the client factory, OpenAI response translation and error
normalisation, and the retry/failover wrapper.

Run with:
    pytest tests/unit/test_brain.py -v
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from brain import (
    LLMClientFactory,
    LLMConfig,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMRateLimitError,
    LLMResponse,
    Message,
    ResilientLLMClient,
    ResponseFormat,
    RetryPolicy,
)
from brain.types import FinishReason, Provider, Role, TokenUsage


# ─────────────────────────────────────────────────────────────────────────────
# Shared fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def basic_messages() -> list[Message]:
    return [
        Message.system("You are a travel assistant."),
        Message.user("Weather in Lisbon?"),
    ]


@pytest.fixture
def basic_config() -> LLMConfig:
    return LLMConfig(model="gpt-4o-mini", temperature=0.7, max_tokens=100)


# ─────────────────────────────────────────────────────────────────────────────
# Models
# ─────────────────────────────────────────────────────────────────────────────


class TestMessage:
    def test_factories(self):
        assert Message.system("s").role == Role.SYSTEM
        assert Message.user("u").role == Role.USER
        assert Message.assistant("a").role == Role.ASSISTANT


class TestLLMConfig:
    def test_defaults(self):
        cfg = LLMConfig(model="gpt-4o-mini")
        assert cfg.temperature == 0.3
        assert cfg.response_format == ResponseFormat.TEXT

    def test_derive_copies(self):
        cfg = LLMConfig(model="gpt-4o-mini")
        derived = cfg.derive(temperature=0.0, response_format=ResponseFormat.JSON)
        assert derived.temperature == 0.0
        assert cfg.temperature == 0.3


class TestLLMResponse:
    def test_text_strips_and_handles_none(self):
        assert LLMResponse(content="  hi ").text == "hi"
        assert LLMResponse(content=None).text == ""

    def test_token_usage_total(self):
        assert TokenUsage(input_tokens=10, output_tokens=5).total_tokens == 15


# ─────────────────────────────────────────────────────────────────────────────
# Factory
# ─────────────────────────────────────────────────────────────────────────────


class TestLLMClientFactory:
    def test_create_openai(self):
        from brain.openai_client import OpenAIClient
        assert isinstance(LLMClientFactory.create("openai", api_key="sk-test"), OpenAIClient)

    def test_create_ollama(self):
        from brain.ollama_client import OllamaClient
        client = LLMClientFactory.create("Ollama")
        assert isinstance(client, OllamaClient)
        assert client.base_url == "http://localhost:11434/v1"

    def test_openai_missing_key_raises(self):
        with pytest.raises(LLMConnectionError):
            LLMClientFactory.create("openai")

    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError):
            LLMClientFactory.create("telepathy")

    def test_default_model(self):
        assert LLMClientFactory.default_model("ollama") == "llama3.1"
        assert LLMClientFactory.default_model("other") == "gpt-4o-mini"

    def test_from_settings_wraps_with_fallbacks(self):
        from config.settings import LLMConfig as LLMSettings, Settings
        settings = Settings(
            llm=LLMSettings(default_provider="openai", fallback_providers=["ollama", "openai"]),
            OPENAI_API_KEY="sk-test",
        )
        client = LLMClientFactory.from_settings(settings)
        assert isinstance(client, ResilientLLMClient)
        assert "1 fallback(s)" in repr(client)

    def test_from_settings_without_key_raises(self):
        from config.settings import LLMConfig as LLMSettings, Settings
        with pytest.raises(LLMConnectionError):
            LLMClientFactory.from_settings(Settings(llm=LLMSettings(default_provider="openai")))


# ─────────────────────────────────────────────────────────────────────────────
# OpenAI client
# ─────────────────────────────────────────────────────────────────────────────


class TestOpenAIClient:
    @pytest.fixture
    def client(self):
        from brain.openai_client import OpenAIClient
        return OpenAIClient(api_key="sk-test-fake")

    def _make_mock_response(
        self,
        content: str = "Hello!",
        finish_reason: str = "stop",
        model: str = "gpt-4o-mini",
        input_tokens: int = 10,
        output_tokens: int = 5,
    ):
        mock = MagicMock()
        mock.model = model
        mock.choices = [MagicMock()]
        mock.choices[0].finish_reason = finish_reason
        mock.choices[0].message.content = content
        mock.usage.prompt_tokens = input_tokens
        mock.usage.completion_tokens = output_tokens
        return mock

    @pytest.mark.asyncio
    async def test_basic_generate(self, client, basic_messages, basic_config):
        client._client.chat.completions.create = AsyncMock(
            return_value=self._make_mock_response(content="Sunny, 24°C.")
        )
        result = await client.generate(basic_messages, basic_config)

        assert result.content == "Sunny, 24°C."
        assert result.finish_reason == FinishReason.STOP
        assert result.provider == Provider.OPENAI
        assert result.usage.total_tokens == 15

        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "You are a travel assistant."}
        assert kwargs["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_json_mode(self, client, basic_messages, basic_config):
        client._client.chat.completions.create = AsyncMock(
            return_value=self._make_mock_response(content='{"a": 1}')
        )
        await client.generate(basic_messages, basic_config.derive(response_format=ResponseFormat.JSON))
        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_length_finish(self, client, basic_messages, basic_config):
        client._client.chat.completions.create = AsyncMock(
            return_value=self._make_mock_response(finish_reason="length")
        )
        result = await client.generate(basic_messages, basic_config)
        assert result.finish_reason == FinishReason.LENGTH

    @pytest.mark.asyncio
    async def test_auth_error_raises_connection_error(self, client, basic_messages, basic_config):
        import openai as oai
        client._client.chat.completions.create = AsyncMock(
            side_effect=oai.AuthenticationError("Invalid key", response=MagicMock(), body={})
        )
        with pytest.raises(LLMConnectionError):
            await client.generate(basic_messages, basic_config)

    @pytest.mark.asyncio
    async def test_rate_limit_raises(self, client, basic_messages, basic_config):
        import openai as oai
        client._client.chat.completions.create = AsyncMock(
            side_effect=oai.RateLimitError("Rate limit", response=MagicMock(), body={})
        )
        with pytest.raises(LLMRateLimitError):
            await client.generate(basic_messages, basic_config)

    @pytest.mark.asyncio
    async def test_context_overflow(self, client, basic_messages, basic_config):
        import openai as oai
        client._client.chat.completions.create = AsyncMock(
            side_effect=oai.BadRequestError("maximum context length exceeded", response=MagicMock(), body={})
        )
        with pytest.raises(LLMContextError):
            await client.generate(basic_messages, basic_config)


# ─────────────────────────────────────────────────────────────────────────────
# Retry and failover
# ─────────────────────────────────────────────────────────────────────────────


def _fake_client(*effects) -> MagicMock:
    client = MagicMock()
    client.generate = AsyncMock(side_effect=list(effects))
    client.health_check = AsyncMock(return_value=True)
    return client


def _resilient(primary, fallbacks=None, max_attempts: int = 2) -> ResilientLLMClient:
    # zero delays so retries do not sleep
    return ResilientLLMClient(
        primary=primary, fallbacks=fallbacks, max_attempts=max_attempts, base_delay=0.0, max_delay=0.0,
    )


class TestResilientLLMClient:

    @pytest.mark.asyncio
    async def test_retries_transient_error(self, basic_messages, basic_config):
        primary = _fake_client(LLMConnectionError("blip"), LLMResponse(content="ok"))
        client = _resilient(primary)
        result = await client.generate(basic_messages, basic_config)
        assert result.text == "ok"
        assert primary.generate.await_count == 2

    @pytest.mark.asyncio
    async def test_fails_over_after_retries(self, basic_messages, basic_config):
        primary = _fake_client(LLMConnectionError("down"), LLMConnectionError("down"))
        fallback = _fake_client(LLMResponse(content="from fallback"))
        client = _resilient(primary, [fallback])
        result = await client.generate(basic_messages, basic_config)
        assert result.text == "from fallback"

    @pytest.mark.asyncio
    async def test_permanent_error_skips_failover(self, basic_messages, basic_config):
        primary = _fake_client(LLMContextError("too long"))
        fallback = _fake_client(LLMResponse(content="unused"))
        client = _resilient(primary, [fallback])
        with pytest.raises(LLMContextError):
            await client.generate(basic_messages, basic_config)
        fallback.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_failed(self, basic_messages, basic_config):
        primary = _fake_client(LLMConnectionError("a"))
        client = _resilient(primary, max_attempts=1)
        with pytest.raises(LLMError) as exc_info:
            await client.generate(basic_messages, basic_config)
        assert exc_info.value.provider == "all"

    @pytest.mark.asyncio
    async def test_health_check_uses_active_client(self):
        primary = _fake_client()
        client = _resilient(primary)
        assert await client.health_check() is True


class TestRetryPolicy:

    def test_retry_after_wins_and_is_capped(self):
        policy = RetryPolicy(base_delay=0.5, max_delay=5.0)
        assert policy.delay_for(0, LLMRateLimitError("slow down", retry_after=2.0)) == 2.0
        assert policy.delay_for(0, LLMRateLimitError("slow down", retry_after=60.0)) == 5.0

    def test_exponential_backoff_bounded(self):
        policy = RetryPolicy(base_delay=0.5, max_delay=5.0)
        assert 1.0 <= policy.delay_for(1, LLMConnectionError("x")) <= 1.5
        assert policy.delay_for(10, LLMConnectionError("x")) == 5.0

    def test_at_least_one_attempt(self):
        assert RetryPolicy(max_attempts=0).max_attempts == 1

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, basic_messages, basic_config):
        import openai as oai
        from brain.openai_client import OpenAIClient
        client = OpenAIClient(api_key="sk-test-fake")
        client._client.chat.completions.create = AsyncMock(
            side_effect=oai.InternalServerError("upstream", response=MagicMock(status_code=502), body={})
        )
        with pytest.raises(LLMConnectionError) as exc_info:
            await client.generate(basic_messages, basic_config)
        assert exc_info.value.status_code == 502
