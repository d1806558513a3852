"""
Structured logging for the Realify API.

stdlib ``logging.getLogger(__name__)`` calls are routed through structlog's
ProcessorFormatter, so every line carries the service name, request and
correlation ids, and the authenticated user. Provider and Stripe
credentials that leak into messages are masked before rendering.
"""
from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from contextvars import ContextVar

import structlog

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)

APP_VERSION = "1.0.0"
SERVICE_NAME = "realify-backend"

# Stripe secret/restricted keys, webhook secrets, Replicate and OpenAI tokens, bearer headers.
_SECRET_PATTERN = re.compile(
    r"\b(sk_(?:live|test)_|rk_(?:live|test)_|whsec_|r8_|sk-(?:proj-)?)[A-Za-z0-9_-]{4,}"
    r"|(Bearer\s+)[A-Za-z0-9._-]{8,}"
)

_NOISY_LOGGERS = ("httpcore", "httpx", "urllib3", "asyncio", "stripe", "openai")

_startup_time: float = time.time()


def get_uptime_s() -> float:
    return time.time() - _startup_time


def _inject_context(logger_name: str, method_name: str, event_dict: dict) -> dict:
    """Add service identity and whichever request ids are bound."""
    event_dict["service"] = SERVICE_NAME
    event_dict["version"] = APP_VERSION

    for key, var in (
        ("request_id", request_id_var),
        ("correlation_id", correlation_id_var),
        ("user_id", user_id_var),
    ):
        value = var.get(None)
        if value:
            event_dict[key] = value
    return event_dict


def _mask(match: re.Match) -> str:
    prefix = match.group(1) or match.group(2)
    return f"{prefix}***"


def _redact_secrets(logger_name: str, method_name: str, event_dict: dict) -> dict:
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _SECRET_PATTERN.sub(_mask, value)
    return event_dict


def _lowercase_level(logger_name: str, method_name: str, event_dict: dict) -> dict:
    level = event_dict.get("level")
    if level:
        event_dict["level"] = level.lower()
    return event_dict


def setup_logging(
    log_dir: str = "logs",
    log_file: str = "realify.jsonl",
    log_level: str | int = logging.INFO,
    json_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Configure structlog and the root logger. Call once, before the first log call.

    The rotating file always gets JSON lines; stderr gets JSON unless
    ``json_output`` is false, in which case it gets the console renderer.
    """
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        _lowercase_level,
        structlog.stdlib.add_logger_name,
        _inject_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        _redact_secrets,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    def formatter(renderer) -> structlog.stdlib.ProcessorFormatter:
        return structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )

    json_formatter = formatter(structlog.processors.JSONRenderer())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.getLevelName(log_level.upper()) if isinstance(log_level, str) else log_level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(
        json_formatter if json_output else formatter(structlog.dev.ConsoleRenderer(colors=False))
    )
    root.addHandler(console_handler)

    # stderr only when the log dir is not writable (read-only container fs)
    try:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, log_file),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError:
        root.warning("Log directory %s is not writable; logging to stderr only", log_dir)
    else:
        file_handler.setFormatter(json_formatter)
        root.addHandler(file_handler)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
