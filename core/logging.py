"""
Structured logging configuration.

JSON lines in production, readable text in development. Both formats carry
the `extra_fields` dict passed through `extra=`; athlete free text (check-in
notes, override reasons) is redacted from it before anything is written.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict
from core.config import settings

REDACTED = "[redacted]"
REDACTED_FIELDS = frozenset({"notes", "override_reason", "user_override_reason", "authorization"})


def redact_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: REDACTED if key in REDACTED_FIELDS and value is not None else value
        for key, value in fields.items()
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_data.update(redact_fields(extra_fields))

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Plain line, then extra_fields as key=value pairs."""

    def __init__(self):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            pairs = " ".join(f"{key}={value}" for key, value in redact_fields(extra_fields).items())
            line = f"{line} | {pairs}"
        return line


def setup_logging() -> logging.Logger:
    """Configure the root logger once at startup."""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # SQL echo is controlled by DEBUG on the engine, not by the log level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    return root_logger
