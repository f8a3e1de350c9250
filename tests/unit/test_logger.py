"""
tests/unit/test_logger.py — Structured logging tests

Covers:
  - redact_secrets masks credential fields and sk- keys inside messages
  - setup_logging writes JSON lines with the bound thread_id
"""

from __future__ import annotations

import json
import logging

from observability.logger import bind_thread, clear_thread, get_logger, redact_secrets, setup_logging


class TestRedactSecrets:

    def test_masks_secret_fields(self):
        event = redact_secrets(None, "info", {"event": "x", "api_key": "sk-abcdef123456789"})
        assert event["api_key"] == "***"

    def test_masks_key_inside_error_text(self):
        event = redact_secrets(None, "error", {"event": "x", "error": "Incorrect API key sk-proj1234567890abcdef"})
        assert event["error"] == "Incorrect API key sk-proj***"

    def test_leaves_other_values(self):
        event = redact_secrets(None, "info", {"event": "router.guard_hit", "confidence": 0.9, "token": ""})
        assert event == {"event": "router.guard_hit", "confidence": 0.9, "token": ""}


class TestSetupLogging:

    def test_json_file_with_thread_id(self, tmp_path):
        setup_logging(level="INFO", log_dir=tmp_path, console_output=False)
        try:
            bind_thread("t-42")
            get_logger("tests.logger").info("service.turn_started", chars=12)
            clear_thread()
            for handler in logging.getLogger().handlers:
                handler.flush()

            lines = (tmp_path / "wayfarer.log").read_text(encoding="utf-8").strip().splitlines()
            record = json.loads(lines[-1])
            assert record["event"] == "service.turn_started"
            assert record["thread_id"] == "t-42"
            assert record["level"] == "info"
        finally:
            root = logging.getLogger()
            for handler in list(root.handlers):
                handler.close()
                root.removeHandler(handler)
