"""
observability/logger.py — Wayfarer Structured Logger

structlog on top of stdlib logging:
  - JSON lines to a rotating file (data/logs/wayfarer.log)
  - JSON or coloured console output on stderr; the CLI REPL owns stdout
  - thread_id bound per turn through contextvars, so tool-call tasks
    spawned by the turn log it too
  - provider credentials masked before rendering (API errors from the
    OpenAI SDK sometimes echo the key prefix back)

Usage:
    from observability.logger import get_logger, setup_logging

    setup_logging(level="INFO", log_dir="./data/logs")   # once, in main.bootstrap
    log = get_logger(__name__)
    log.info("router.guard_hit", guard="policy", confidence=0.9)
"""

from __future__ import annotations

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any

import structlog

_SECRET_FIELDS = frozenset({"api_key", "authorization", "openai_api_key", "token"})
_SECRET_PATTERN = re.compile(r"\b(sk-[A-Za-z0-9_\-]{4})[A-Za-z0-9_\-]{8,}")
_MASK = "***"


def redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor: mask credential fields and sk-... keys inside strings."""
    for key, value in event_dict.items():
        if key in _SECRET_FIELDS and value:
            event_dict[key] = _MASK
        elif isinstance(value, str) and "sk-" in value:
            event_dict[key] = _SECRET_PATTERN.sub(r"\1" + _MASK, value)
    return event_dict


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: bool = True,
    console_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and stdlib logging. Safe to call more than once;
    the last call wins (handlers are replaced with force=True).

    Args:
        level:          DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:        Directory for the rotating JSON log file.
        json_format:    Console emits JSON when True, coloured text when False.
        console_output: Mirror log lines to stderr.
        max_bytes:      Rotation size of wayfarer.log.
        backup_count:   Rotated files kept.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            filename=log_dir / "wayfarer.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    ]
    if console_output:
        handlers.append(logging.StreamHandler(sys.stderr))

    for handler in handlers:
        handler.setLevel(numeric_level)

    logging.basicConfig(format="%(message)s", level=numeric_level, handlers=handlers, force=True)
    # httpx logs every request URL at INFO; keep it for DEBUG runs only
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )
    console_renderer = (
        structlog.processors.JSONRenderer() if json_format
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    console_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, console_renderer],
        foreign_pre_chain=shared_processors,
    )

    handlers[0].setFormatter(file_formatter)
    for handler in handlers[1:]:
        handler.setFormatter(console_formatter)


def get_logger(name: str = "wayfarer", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Bound logger for a module. Extra keyword values are attached to every line:

        log = get_logger(__name__, component="tool_bus")
        log.info("tool_bus.dispatch", tool="weather")
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_thread(thread_id: str, **extra: Any) -> None:
    """Attach thread_id to every log line of the current turn."""
    structlog.contextvars.bind_contextvars(thread_id=thread_id, **extra)


def clear_thread() -> None:
    structlog.contextvars.clear_contextvars()
