"""
Logging configuration.

Features:
- Structured JSON logging in production, readable lines in development
- Environment-based log levels
- Redaction of sensitive extra fields (message content, tokens, keys)
"""

import logging
import sys
import os
import json
from datetime import datetime, timezone
from typing import Any, Dict

SENSITIVE_FIELDS = {"password", "token", "api_key", "content", "partial_content"}
MAX_FIELD_LENGTH = 100

# Attributes every LogRecord carries; anything else was passed via `extra=`.
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: value for key, value in vars(record).items() if key not in _RESERVED_ATTRS}


def sanitize_for_log(key: str, value: Any) -> Any:
    """Redact or shorten one extra field before it is emitted."""
    if key in SENSITIVE_FIELDS:
        return "[REDACTED]"
    if key == "user_id" and isinstance(value, str):
        return value[:8] + "..."
    if isinstance(value, str) and len(value) > MAX_FIELD_LENGTH:
        return value[:MAX_FIELD_LENGTH] + "..."
    return value


class RedactingFilter(logging.Filter):
    """Rewrites `extra=` fields on each record so secrets never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _extra_fields(record).items():
            setattr(record, key, sanitize_for_log(key, value))
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data.update(_extra_fields(record))
        return json.dumps(log_data, default=str)


class SimpleFormatter(logging.Formatter):
    """Human-readable formatter for development; extra fields are appended."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _extra_fields(record)
        if extras:
            line += " " + " ".join(f"{key}={value}" for key, value in extras.items())
        return line


def configure_logging(use_json: bool = None, level: str = None):
    """
    Configure application-wide logging.

    Args:
        use_json: If True, use JSON formatting. If None, auto-detect from ENV.
        level: Log level name. If None, read LOG_LEVEL or derive from ENV.
    """
    env = os.getenv("ENV", "dev").lower()
    is_production = env in ("prod", "production")

    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO" if is_production else "DEBUG").upper()

    log_level = getattr(logging, level, logging.INFO)

    if use_json is None:
        use_json = is_production

    formatter = JSONFormatter() if use_json else SimpleFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(RedactingFilter())
    root_logger.addHandler(console_handler)

    for noisy in ("urllib3", "openai", "httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured - env=%s, level=%s, json_format=%s", env, level, use_json
    )
