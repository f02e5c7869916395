"""
Name: Structured Logger (JSON) with request context

Responsibilities:
  - Format log records as JSON (parseable, correlatable by request_id)
  - Redact sensitive fields and cap oversized values
  - Offer a plain text format for local development (LOG_JSON=false)

Collaborators:
  - vidshare/context.py (ContextVars)
  - lifecycle/runner.py: calls configure_logging(settings) once at startup

Notes:
  - `logger` is importable at module level; configure_logging() only adjusts
    level and formatter, it never duplicates handlers
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

# LogRecord attributes that are not "extra" fields.
_INTERNAL_LOGRECORD_KEYS: set[str] = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "taskName",
}

LOGGER_NAME = "vidshare"


class _Redactor:
    """Redact secret-looking keys, trim huge strings, keep output JSON-safe."""

    SENSITIVE_KEYS = {
        "password",
        "passwd",
        "secret",
        "token",
        "authorization",
        "cookie",
        "api_key",
        "apikey",
        "access_token",
        "refresh_token",
        "private_key",
        "credential",
        "auth_secret",
        "data_store_uri",
    }

    def __init__(self, max_str: int = 8_000, max_depth: int = 4):
        self._max_str = max_str
        self._max_depth = max_depth

    def sanitize(self, value: Any, *, depth: int = 0, key: str | None = None) -> Any:
        if key and key.lower() in self.SENSITIVE_KEYS:
            return "***REDACTED***"

        if depth > self._max_depth:
            return "***TRUNCATED***"

        if isinstance(value, str):
            if len(value) <= self._max_str:
                return value
            return value[: self._max_str] + "...(truncated)"

        if isinstance(value, (bytes, bytearray)):
            return f"<bytes {len(value)}B>"

        if isinstance(value, dict):
            return {
                str(k): self.sanitize(v, depth=depth + 1, key=str(k))
                for k, v in value.items()
            }

        if isinstance(value, (list, tuple)):
            return [self.sanitize(v, depth=depth + 1, key=key) for v in value]

        try:
            json.dumps(value)
            return value
        except (TypeError, ValueError):
            return str(value)


class JSONFormatter(logging.Formatter):
    """LogRecord -> single-line JSON, enriched with the current request context."""

    def __init__(self):
        super().__init__()
        self._redactor = _Redactor()

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "pid": os.getpid(),
        }

        from ..context import get_context_dict

        payload.update(get_context_dict())

        for k, v in record.__dict__.items():
            if k in _INTERNAL_LOGRECORD_KEYS:
                continue
            payload[k] = self._redactor.sanitize(v, key=k)

        if record.exc_info:
            exc_type = record.exc_info[0].__name__ if record.exc_info[0] else None
            exc_msg = str(record.exc_info[1]) if record.exc_info[1] else None
            payload["exception"] = {
                "type": exc_type,
                "message": exc_msg,
                "stacktrace": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(
            payload, ensure_ascii=False, default=str, separators=(",", ":")
        )


def _text_formatter() -> logging.Formatter:
    return logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s", "%Y-%m-%d %H:%M:%S"
    )


def setup_logger(
    name: str = LOGGER_NAME, level: str = "INFO", use_json: bool = True
) -> logging.Logger:
    """Create (or re-tune) a logger with a single stdout handler."""
    log = logging.getLogger(name)
    log.setLevel(getattr(logging, (level or "INFO").upper(), logging.INFO))
    log.propagate = False

    formatter = JSONFormatter() if use_json else _text_formatter()
    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        log.addHandler(handler)
    for handler in log.handlers:
        handler.setFormatter(formatter)

    return log


def configure_logging(settings) -> logging.Logger:
    """Apply LOG_LEVEL / LOG_JSON and route uvicorn's error log the same way."""
    log = setup_logger(LOGGER_NAME, settings.log_level, settings.log_json)
    setup_logger("uvicorn.error", settings.log_level, settings.log_json)
    return log


logger = setup_logger()
