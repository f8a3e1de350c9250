"""
brain/llm_client.py — LLM client base, error taxonomy, retry and failover

Wayfarer calls a model for three things: routing escalation, planning
and blending (plus the optional self-check). All of them go through a
BaseLLMClient; main.py wraps the configured provider in a
ResilientLLMClient so a flaky provider is retried and, if configured,
replaced by a fallback provider before the turn gives up on the model and
takes its deterministic path.

Error taxonomy:
    LLMError
      ├── LLMConnectionError     transient: retried, then failover
      ├── LLMRateLimitError      transient: retried (honours retry_after)
      ├── LLMContextError        permanent: raised immediately
      └── LLMInvalidRequestError permanent: raised immediately
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from typing import Optional

from brain.types import LLMConfig, LLMResponse, Message
from observability.logger import get_logger
from observability.metrics import metrics

log = get_logger(__name__)


class BaseLLMClient(ABC):
    """A chat-completion provider. Implementations normalise SDK errors into LLMError."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key
        self.base_url = base_url

    @abstractmethod
    async def generate(self, messages: list[Message], config: LLMConfig) -> LLMResponse:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


# ─────────────────────────────────────────────────────────────────────────────
# Exceptions
# ─────────────────────────────────────────────────────────────────────────────


class LLMError(Exception):
    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class LLMConnectionError(LLMError):
    """Provider unreachable, timed out, or rejected the credentials."""


class LLMRateLimitError(LLMError):
    def __init__(self, message: str, provider: str = "", retry_after: Optional[float] = None):
        super().__init__(message, provider, status_code=429)
        self.retry_after = retry_after


class LLMContextError(LLMError):
    """Prompt does not fit the model context window."""


class LLMInvalidRequestError(LLMError):
    pass


_TRANSIENT = (LLMConnectionError, LLMRateLimitError)
_PERMANENT = (LLMContextError, LLMInvalidRequestError)


# ─────────────────────────────────────────────────────────────────────────────
# Retry policy
# ─────────────────────────────────────────────────────────────────────────────


class RetryPolicy:
    """
    Exponential backoff with jitter for transient errors.

    delay(attempt) = min(base_delay * 2**attempt + jitter, max_delay)
    A rate-limit error carrying retry_after uses that value, still capped.
    Jitter is bounded by base_delay so a zero base_delay never sleeps.
    """

    def __init__(self, max_attempts: int = 2, base_delay: float = 0.5, max_delay: float = 5.0):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay

    @classmethod
    def from_config(cls, cfg) -> "RetryPolicy":
        return cls(max_attempts=cfg.max_attempts, base_delay=cfg.base_delay, max_delay=cfg.max_delay)

    def delay_for(self, attempt: int, error: Exception) -> float:
        if isinstance(error, LLMRateLimitError) and error.retry_after:
            return min(error.retry_after, self.max_delay)
        jitter = random.uniform(0, self.base_delay)
        return min(self.base_delay * (2 ** attempt) + jitter, self.max_delay)

    async def run(self, client: BaseLLMClient, messages: list[Message], config: LLMConfig) -> LLMResponse:
        last_error: Optional[LLMError] = None
        for attempt in range(self.max_attempts):
            try:
                return await client.generate(messages=messages, config=config)
            except _TRANSIENT as e:
                last_error = e
                if attempt == self.max_attempts - 1:
                    break
                delay = self.delay_for(attempt, e)
                metrics.incr("llm.retry", client=repr(client))
                log.warning(
                    "llm.retrying",
                    attempt=attempt + 1,
                    max_attempts=self.max_attempts,
                    delay_s=round(delay, 2),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                if delay > 0:
                    await asyncio.sleep(delay)
        raise last_error  # type: ignore[misc]


# ─────────────────────────────────────────────────────────────────────────────
# ResilientLLMClient
# ─────────────────────────────────────────────────────────────────────────────


class ResilientLLMClient(BaseLLMClient):
    """
    Primary client plus ordered fallbacks, each called under the same
    RetryPolicy. Permanent errors propagate without failover because another
    provider would reject the same prompt. Cancellation (turn deadline)
    propagates untouched.
    """

    def __init__(
        self,
        primary: BaseLLMClient,
        fallbacks: Optional[list[BaseLLMClient]] = None,
        max_attempts: int = 2,
        base_delay: float = 0.5,
        max_delay: float = 5.0,
        policy: Optional[RetryPolicy] = None,
    ):
        super().__init__()
        self._primary = primary
        self._fallbacks = list(fallbacks or [])
        self._policy = policy or RetryPolicy(max_attempts, base_delay, max_delay)
        self._active_client: BaseLLMClient = primary

    @property
    def primary(self) -> BaseLLMClient:
        return self._primary

    @property
    def active(self) -> BaseLLMClient:
        """The client that answered last; a fallback after a failover."""
        return self._active_client

    async def generate(self, messages: list[Message], config: LLMConfig) -> LLMResponse:
        chain = [self._primary] + self._fallbacks
        last_error: Optional[LLMError] = None

        for i, client in enumerate(chain):
            if i > 0:
                metrics.incr("llm.failover", to_client=repr(client))
                log.warning("llm.failing_over", to_client=repr(client), reason=str(last_error))
            try:
                result = await self._policy.run(client, messages, config)
            except _PERMANENT:
                raise
            except LLMError as e:
                last_error = e
                log.error("llm.client_exhausted", client=repr(client), error=str(e),
                          fallbacks_left=len(chain) - i - 1)
                continue
            self._active_client = client
            return result

        raise LLMError(f"All LLM clients failed. Last error: {last_error}", provider="all")

    async def health_check(self) -> bool:
        return await self._active_client.health_check()

    def __repr__(self) -> str:
        n = len(self._fallbacks)
        suffix = f" + {n} fallback(s)" if n else ""
        return f"<ResilientLLMClient primary={self._primary!r}{suffix}>"
