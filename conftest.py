"""
Test conftest — isolate environment variables and process-wide singletons
so tests are not affected by real keys, config overrides or state left
behind by another test.
"""
import pytest

_ENV_VARS = [
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "OLLAMA_BASE_URL",
    "WAYFARER_CONFIG",
]


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Remove API key and config env vars for every test so Settings()
    behaves as if nothing is set unless the test explicitly provides it.
    Also disables .env file loading so local developer .env files don't
    leak real credentials into tests."""
    import os

    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("RATE_MIN_MS_") or var.startswith("RATE_MAX_CONC_"):
            monkeypatch.delenv(var, raising=False)

    # Disable .env file loading by patching Settings.model_config
    import config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Process-wide services start empty in every test."""
    import resilience.service as resilience_module
    from observability.metrics import metrics

    resilience_module._service = None
    metrics.reset()
    yield
    resilience_module._service = None
    metrics.reset()
