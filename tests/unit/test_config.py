"""
tests/unit/test_config.py — Settings Tests

Covers:
  - Field validators reject out-of-range values at parse time
  - validate_all() raises ConfigError with a numbered list
  - validate_all() catches a missing API key for the chosen provider
  - validate_all() catches misordered router thresholds
  - host_limits_for() merges config.yaml overrides with RATE_* env vars
  - WAYFARER_CONFIG env var is respected by load_settings()
  - Explicit config_path argument takes priority over env var
  - Env vars override nested config values
"""

from __future__ import annotations

import os
import textwrap
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError


# ── Sub-model validators ──────────────────────────────────────────────────────

class TestAgentConfig:
    def test_defaults(self):
        from config.settings import AgentConfig
        cfg = AgentConfig()
        assert cfg.max_steps == 8
        assert cfg.turn_timeout_ms == 20000
        assert cfg.plan_confidence_threshold == 0.5

    def test_zero_steps_rejected(self):
        from config.settings import AgentConfig
        with pytest.raises(ValidationError):
            AgentConfig(max_steps=0)

    def test_tiny_timeout_rejected(self):
        from config.settings import AgentConfig
        with pytest.raises(ValidationError):
            AgentConfig(turn_timeout_ms=10)

    def test_threshold_outside_unit_interval_rejected(self):
        from config.settings import AgentConfig
        with pytest.raises(ValidationError):
            AgentConfig(plan_confidence_threshold=1.5)


class TestLLMConfig:
    def test_valid_provider(self):
        from config.settings import LLMConfig
        assert LLMConfig(default_provider="ollama").default_provider == "ollama"

    def test_unknown_provider_rejected(self):
        from config.settings import LLMConfig
        with pytest.raises(ValidationError):
            LLMConfig(default_provider="telepathy")

    def test_temperature_bounds(self):
        from config.settings import LLMConfig
        LLMConfig(temperature=0.0)
        LLMConfig(temperature=2.0)
        with pytest.raises(ValidationError):
            LLMConfig(temperature=2.1)


class TestSessionConfig:
    def test_defaults(self):
        from config.settings import SessionConfig
        cfg = SessionConfig()
        assert cfg.kind == "memory"
        assert cfg.ttl_sec == 3600
        assert cfg.timeout_ms == 2000
        assert cfg.max_messages == 16

    def test_kind_is_lowercased(self):
        from config.settings import SessionConfig
        assert SessionConfig(kind="SQLite").kind == "sqlite"

    def test_unknown_kind_rejected(self):
        from config.settings import SessionConfig
        with pytest.raises(ValidationError):
            SessionConfig(kind="redis")

    def test_ttl_minimum(self):
        from config.settings import SessionConfig
        with pytest.raises(ValidationError):
            SessionConfig(ttl_sec=59)


class TestResilienceConfig:
    def test_defaults(self):
        from config.settings import ResilienceConfig
        cfg = ResilienceConfig()
        assert cfg.breaker.failure_threshold == 5
        assert cfg.breaker.success_threshold == 3
        assert cfg.breaker.reset_timeout_ms == 30000
        assert cfg.limiter.min_time_ms == 1000
        assert cfg.limiter.reservoir == 100
        assert cfg.host_defaults.min_time_ms == 200
        assert cfg.host_defaults.max_concurrency == 2
        assert cfg.blocklist_ttl_ms == 900000

    def test_zero_breaker_threshold_rejected(self):
        from config.settings import BreakerConfig
        with pytest.raises(ValidationError):
            BreakerConfig(failure_threshold=0)


class TestLoggingConfig:
    def test_case_insensitive(self):
        from config.settings import LoggingConfig
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_level_rejected(self):
        from config.settings import LoggingConfig
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")


class TestToolsConfig:
    def test_timeout_for_known_and_unknown_tool(self):
        from config.settings import ToolsConfig
        cfg = ToolsConfig()
        assert cfg.timeout_for("weather") == 7.0
        assert cfg.timeout_for("mystery") == 8.0


# ── validate_all ──────────────────────────────────────────────────────────────

class TestValidateAll:
    def test_passes_with_ollama_no_key(self):
        from config.settings import LLMConfig, Settings
        Settings(llm=LLMConfig(default_provider="ollama")).validate_all()

    def test_fails_missing_openai_key(self):
        from config.settings import ConfigError, LLMConfig, Settings
        s = Settings(llm=LLMConfig(default_provider="openai"))
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        assert "OPENAI_API_KEY" in str(exc_info.value)

    def test_passes_with_key_present(self):
        from config.settings import LLMConfig, Settings
        s = Settings(llm=LLMConfig(default_provider="openai"), OPENAI_API_KEY="sk-test-key")
        s.validate_all()

    def test_error_message_is_numbered(self):
        from config.settings import ConfigError, LLMConfig, Settings
        s = Settings(llm=LLMConfig(default_provider="openai"))
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        assert "1." in str(exc_info.value)

    def test_multiple_errors_all_reported(self):
        from config.settings import ConfigError, LLMConfig, RouterConfig, Settings
        s = Settings(
            llm=LLMConfig(default_provider="openai"),
            router=RouterConfig(local_accept=0.4, llm_accept=0.6),
        )
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        msg = str(exc_info.value)
        assert "2 configuration problem(s)" in msg
        assert "router.llm_accept" in msg

    def test_fallback_provider_missing_key_caught(self):
        from config.settings import ConfigError, LLMConfig, Settings
        s = Settings(llm=LLMConfig(default_provider="ollama", fallback_providers=["openai"]))
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        assert "openai" in str(exc_info.value).lower()

    def test_tool_timeout_longer_than_turn_caught(self):
        from config.settings import AgentConfig, ConfigError, LLMConfig, Settings, ToolsConfig
        s = Settings(
            llm=LLMConfig(default_provider="ollama"),
            agent=AgentConfig(turn_timeout_ms=5000),
            tools=ToolsConfig(timeouts_ms={"search": 10000}),
        )
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        assert "tools.timeouts_ms.search" in str(exc_info.value)


# ── Host limits ───────────────────────────────────────────────────────────────

class TestHostLimits:
    def test_host_key(self):
        from config.settings import host_key
        assert host_key("api.open-meteo.com") == "API_OPEN_METEO_COM"

    def test_defaults_when_host_unknown(self):
        from config.settings import Settings
        limits = Settings().host_limits_for("example.org")
        assert limits.min_time_ms == 200
        assert limits.max_concurrency == 2

    def test_config_override(self):
        from config.settings import HostLimitConfig, ResilienceConfig, Settings
        s = Settings(resilience=ResilienceConfig(
            hosts={"html.duckduckgo.com": HostLimitConfig(min_time_ms=1000, max_concurrency=1)}
        ))
        limits = s.host_limits_for("HTML.duckduckgo.com")
        assert limits.min_time_ms == 1000
        assert limits.max_concurrency == 1

    def test_env_override_wins(self, monkeypatch):
        from config.settings import Settings
        monkeypatch.setenv("RATE_MIN_MS_API_OPEN_METEO_COM", "50")
        monkeypatch.setenv("RATE_MAX_CONC_API_OPEN_METEO_COM", "4")
        limits = Settings().host_limits_for("api.open-meteo.com")
        assert limits.min_time_ms == 50
        assert limits.max_concurrency == 4


# ── Config path resolution ────────────────────────────────────────────────────

class TestConfigPathResolution:
    def test_explicit_path_takes_priority(self, tmp_path):
        from config.settings import _resolve_config_path
        cfg_file = tmp_path / "custom.yaml"
        env_file = tmp_path / "env.yaml"
        with patch.dict(os.environ, {"WAYFARER_CONFIG": str(env_file)}):
            resolved = _resolve_config_path(str(cfg_file))
        assert resolved == Path(str(cfg_file))

    def test_env_var_used_when_no_explicit_path(self, tmp_path):
        from config.settings import _resolve_config_path
        env_file = tmp_path / "env_config.yaml"
        with patch.dict(os.environ, {"WAYFARER_CONFIG": str(env_file)}):
            resolved = _resolve_config_path(None)
        assert resolved == Path(str(env_file))

    def test_default_path_when_no_arg_no_env(self):
        from config.settings import _resolve_config_path
        assert _resolve_config_path(None) == Path("config/config.yaml")

    def test_load_settings_from_file(self, tmp_path):
        import config.settings as cs
        cfg_file = tmp_path / "test_config.yaml"
        cfg_file.write_text(textwrap.dedent("""
            agent:
              name: "TestWayfarer"
              max_steps: 6
            llm:
              default_provider: "ollama"
            session:
              kind: sqlite
              ttl_sec: 120
        """))
        cs._singleton = None
        settings = cs.load_settings(str(cfg_file))
        assert settings.agent.name == "TestWayfarer"
        assert settings.agent.max_steps == 6
        assert settings.session.kind == "sqlite"
        assert cs.get_settings() is settings

    def test_missing_file_gives_defaults(self, tmp_path):
        from config.settings import load_settings
        settings = load_settings(str(tmp_path / "nope.yaml"))
        assert settings.agent.max_steps == 8

    def test_env_overrides_nested_value(self, tmp_path, monkeypatch):
        from config.settings import load_settings
        monkeypatch.setenv("AGENT__MAX_STEPS", "3")
        settings = load_settings(str(tmp_path / "nope.yaml"))
        assert settings.agent.max_steps == 3

    def test_shipped_config_parses(self):
        from config.settings import load_settings
        path = Path(__file__).resolve().parents[2] / "config" / "config.yaml"
        settings = load_settings(str(path))
        assert settings.tools.enabled == ["weather", "country", "search"]
        assert settings.resilience.limiter_overrides["search"].min_time_ms == 0
        assert settings.resilience.hosts["html.duckduckgo.com"].max_concurrency == 1
