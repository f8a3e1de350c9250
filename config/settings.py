"""
config/settings.py — Wayfarer Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered — all fields are validated and typed.

  - Field validators reject out-of-range thresholds and timeouts at parse time
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a clear, human-readable message listing every problem
  - load_settings() respects WAYFARER_CONFIG env var as a fallback
    when no explicit config_path argument is given
  - host_limits_for() merges per-host limiter overrides from config.yaml with
    RATE_MIN_MS_<HOST_KEY> / RATE_MAX_CONC_<HOST_KEY> environment variables
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_STORE_KINDS = {"memory", "sqlite"}
_KNOWN_PROVIDERS = {"openai", "ollama"}


def _unit_interval(v: float, field: str) -> float:
    if not (0.0 <= v <= 1.0):
        raise ValueError(f"{field} must be between 0.0 and 1.0")
    return v


def host_key(host: str) -> str:
    """api.open-meteo.com → API_OPEN_METEO_COM"""
    return host.replace(".", "_").replace("-", "_").upper()


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class AgentConfig(BaseModel):
    name: str = "Wayfarer"
    version: str = "1.0.0"
    max_steps: int = 8
    turn_timeout_ms: int = 20000
    plan_confidence_threshold: float = 0.5
    planning_timeout_ms: int = 8000
    blending_timeout_ms: int = 8000
    verify_timeout_ms: int = 6000

    @field_validator("max_steps")
    @classmethod
    def _positive_steps(cls, v: int) -> int:
        if v < 1:
            raise ValueError("agent.max_steps must be >= 1")
        return v

    @field_validator("turn_timeout_ms", "planning_timeout_ms", "blending_timeout_ms", "verify_timeout_ms")
    @classmethod
    def _positive_timeout(cls, v: int) -> int:
        if v < 100:
            raise ValueError("agent timeouts must be >= 100 ms")
        return v

    @field_validator("plan_confidence_threshold")
    @classmethod
    def _valid_threshold(cls, v: float) -> float:
        return _unit_interval(v, "agent.plan_confidence_threshold")


class LLMRetryConfig(BaseModel):
    """Exponential backoff config for transient LLM errors."""
    max_attempts: int = 2
    base_delay: float = 0.5
    max_delay: float = 5.0


class LLMConfig(BaseModel):
    default_provider: str = "openai"
    default_model: str = "gpt-4o-mini"
    temperature: float = 0.3
    max_tokens: int = 1024
    timeout_seconds: float = 15.0
    retry: LLMRetryConfig = Field(default_factory=LLMRetryConfig)
    fallback_providers: List[str] = Field(default_factory=list)

    @field_validator("default_provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        if v not in _KNOWN_PROVIDERS:
            raise ValueError(
                f"llm.default_provider '{v}' is not supported. "
                f"Supported: {sorted(_KNOWN_PROVIDERS)}"
            )
        return v

    @field_validator("temperature")
    @classmethod
    def _valid_temperature(cls, v: float) -> float:
        if not (0.0 <= v <= 2.0):
            raise ValueError("llm.temperature must be between 0.0 and 2.0")
        return v

    @field_validator("max_tokens")
    @classmethod
    def _positive_tokens(cls, v: int) -> int:
        if v < 1:
            raise ValueError("llm.max_tokens must be >= 1")
        return v


class RouterConfig(BaseModel):
    local_accept: float = 0.7
    llm_accept: float = 0.5
    unknown_threshold: float = 0.5
    classifier_timeout_ms: int = 3000
    llm_timeout_ms: int = 5000
    max_message_chars: int = 200

    @field_validator("local_accept", "llm_accept", "unknown_threshold")
    @classmethod
    def _valid_confidence(cls, v: float) -> float:
        return _unit_interval(v, "router thresholds")


class SessionConfig(BaseModel):
    kind: str = "memory"
    ttl_sec: int = 3600
    timeout_ms: int = 2000
    max_messages: int = 16
    sqlite_path: str = "./data/sqlite/sessions.db"

    @field_validator("kind")
    @classmethod
    def _valid_kind(cls, v: str) -> str:
        v = v.lower()
        if v not in _VALID_STORE_KINDS:
            raise ValueError(f"session.kind must be one of {sorted(_VALID_STORE_KINDS)}, got '{v}'")
        return v

    @field_validator("ttl_sec")
    @classmethod
    def _min_ttl(cls, v: int) -> int:
        if v < 60:
            raise ValueError("session.ttl_sec must be >= 60")
        return v

    @field_validator("max_messages")
    @classmethod
    def _positive_messages(cls, v: int) -> int:
        if v < 1:
            raise ValueError("session.max_messages must be >= 1")
        return v


class BreakerConfig(BaseModel):
    failure_threshold: int = 5
    success_threshold: int = 3
    timeout_ms: int = 60000
    reset_timeout_ms: int = 30000
    monitoring_period_ms: int = 10000

    @field_validator("failure_threshold", "success_threshold")
    @classmethod
    def _positive_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError("breaker thresholds must be >= 1")
        return v


class LimiterConfig(BaseModel):
    max_concurrent: int = 10
    min_time_ms: int = 1000
    reservoir: int = 100
    reservoir_refresh_amount: int = 10
    reservoir_refresh_interval_ms: int = 60000

    @field_validator("max_concurrent", "reservoir")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("limiter.max_concurrent and limiter.reservoir must be >= 1")
        return v


class HostLimitConfig(BaseModel):
    min_time_ms: int = 200
    max_concurrency: int = 2

    @field_validator("max_concurrency")
    @classmethod
    def _positive_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("host max_concurrency must be >= 1")
        return v


class ResilienceConfig(BaseModel):
    breaker: BreakerConfig = Field(default_factory=BreakerConfig)
    limiter: LimiterConfig = Field(default_factory=LimiterConfig)
    limiter_overrides: dict[str, LimiterConfig] = Field(default_factory=dict)
    host_defaults: HostLimitConfig = Field(default_factory=HostLimitConfig)
    hosts: dict[str, HostLimitConfig] = Field(default_factory=dict)
    blocklist_ttl_ms: int = 900000


class ToolsConfig(BaseModel):
    enabled: list[str] = Field(default_factory=lambda: ["weather", "country", "search"])
    timeouts_ms: dict[str, int] = Field(
        default_factory=lambda: {"weather": 7000, "country": 7000, "search": 10000}
    )
    default_timeout_ms: int = 8000
    web_search_consent: bool = True

    def timeout_for(self, tool: str) -> float:
        """Per-tool timeout in seconds."""
        return self.timeouts_ms.get(tool, self.default_timeout_ms) / 1000.0


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────


class Settings(BaseSettings):
    """
    Wayfarer runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")
    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")

    # -- Structured config (from config.yaml) --------------------------------
    agent: AgentConfig = Field(default_factory=AgentConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("agent", mode="before")
    @classmethod
    def _coerce_agent(cls, v: Any) -> Any:
        return AgentConfig(**v) if isinstance(v, dict) else v

    @field_validator("llm", mode="before")
    @classmethod
    def _coerce_llm(cls, v: Any) -> Any:
        return LLMConfig(**v) if isinstance(v, dict) else v

    @field_validator("router", mode="before")
    @classmethod
    def _coerce_router(cls, v: Any) -> Any:
        return RouterConfig(**v) if isinstance(v, dict) else v

    @field_validator("session", mode="before")
    @classmethod
    def _coerce_session(cls, v: Any) -> Any:
        return SessionConfig(**v) if isinstance(v, dict) else v

    @field_validator("resilience", mode="before")
    @classmethod
    def _coerce_resilience(cls, v: Any) -> Any:
        return ResilienceConfig(**v) if isinstance(v, dict) else v

    @field_validator("tools", mode="before")
    @classmethod
    def _coerce_tools(cls, v: Any) -> Any:
        return ToolsConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def default_llm_provider(self) -> str:
        return self.llm.default_provider

    @property
    def default_llm_model(self) -> str:
        return self.llm.default_model

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> "Path":
        return Path(self.logging.log_dir)

    @property
    def log_json_format(self) -> bool:
        return self.logging.json_format

    @property
    def log_console_output(self) -> bool:
        return self.logging.console_output

    @property
    def ollama_base_url_v1(self) -> str:
        return self.ollama_base_url + "/v1"

    def host_limits_for(self, host: str) -> HostLimitConfig:
        """
        Effective limiter settings for one host.

        config.yaml `resilience.hosts.<host>` wins over defaults, and the
        RATE_MIN_MS_<HOST_KEY> / RATE_MAX_CONC_<HOST_KEY> env vars win over both.
        """
        base = self.resilience.hosts.get(host.lower(), self.resilience.host_defaults)
        key = host_key(host)
        min_ms = os.environ.get(f"RATE_MIN_MS_{key}")
        max_conc = os.environ.get(f"RATE_MAX_CONC_{key}")
        return HostLimitConfig(
            min_time_ms=int(min_ms) if min_ms else base.min_time_ms,
            max_concurrency=int(max_conc) if max_conc else base.max_concurrency,
        )

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field problems that Pydantic can't see.
        """
        errors: list[str] = []

        # ── LLM provider API key ─────────────────────────────────────────────
        if self.llm.default_provider == "openai" and not self.openai_api_key:
            errors.append(
                "LLM provider 'openai' requires OPENAI_API_KEY to be set "
                "in your .env file."
            )
        for fp in self.llm.fallback_providers:
            if fp not in _KNOWN_PROVIDERS:
                errors.append(f"llm.fallback_providers contains unknown provider '{fp}'.")
            elif fp == "openai" and not self.openai_api_key:
                errors.append(
                    "Fallback provider 'openai' requires OPENAI_API_KEY but it "
                    "is not set."
                )

        # ── Router thresholds are ordered ────────────────────────────────────
        if self.router.llm_accept > self.router.local_accept:
            errors.append(
                f"router.llm_accept ({self.router.llm_accept}) must not exceed "
                f"router.local_accept ({self.router.local_accept})."
            )

        # ── Store timeouts fit inside a turn ────────────────────────────────
        if self.session.timeout_ms >= self.agent.turn_timeout_ms:
            errors.append(
                "session.timeout_ms must be smaller than agent.turn_timeout_ms."
            )

        # ── Tool timeouts fit inside a turn ─────────────────────────────────
        for tool, ms in self.tools.timeouts_ms.items():
            if ms > self.agent.turn_timeout_ms:
                errors.append(
                    f"tools.timeouts_ms.{tool} ({ms}) exceeds agent.turn_timeout_ms "
                    f"({self.agent.turn_timeout_ms})."
                )

        # ── Report all errors together ───────────────────────────────────────
        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nWayfarer startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

import threading as _threading

_singleton: Optional[Settings] = None
_singleton_lock = _threading.RLock()

_KNOWN_SECTIONS = {
    "agent", "llm", "router", "session", "resilience", "tools", "logging",
}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. WAYFARER_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("WAYFARER_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading the default config on
    first use. Guarded by _singleton_lock against double-initialisation.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            load_settings()
        return _singleton  # type: ignore[return-value]
