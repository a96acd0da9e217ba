"""Structured logging configuration.

Uses the standard logging module configured through ``dictConfig``, with an
optional JSON formatter for log aggregation in production.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from fusion.app.core.config import settings

# Attributes present on every LogRecord; anything else came in via ``extra=``.
_RESERVED_ATTRS = frozenset(
    {
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "exc_info", "exc_text", "stack_info",
        "lineno", "funcName", "created", "msecs", "relativeCreated",
        "thread", "threadName", "processName", "process", "message",
        "asctime", "taskName",
    }
)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Emits one JSON object per record with the standard fields, any known
    context fields that are set, and remaining ``extra`` values nested under
    ``"extra"``.
    """

    CONTEXT_FIELDS = [
        "request_id",    # From X-Request-ID header
        "client_id",     # Resolved rate-limit client identifier
        "capability",    # image | description | suggestion | lore
        "path",
        "method",
        "status_code",
        "duration_ms",
    ]

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        log_data: Dict[str, Any] = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None and value != "-":
                log_data[field] = value

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in self.CONTEXT_FIELDS:
                continue
            log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Fill in context fields missing from a record so format strings work."""

    CONTEXT_DEFAULTS = {field: None for field in JSONFormatter.CONTEXT_FIELDS}

    def filter(self, record: logging.LogRecord) -> bool:
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    log_format = settings.log_format.lower()
    log_level = settings.log_level.upper()

    formatters: Dict[str, Any] = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - request_id=%(request_id)s - client_id=%(client_id)s - capability=%(capability)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {"()": "fusion.app.core.logging.JSONFormatter"}
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": default_formatter,
            "stream": sys.stdout,
            "filters": ["context"],
        },
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {"()": "fusion.app.core.logging.ContextFilter"},
        },
        "handlers": handlers,
        "loggers": {
            "fusion": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }


def setup_logging() -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config())

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str = "fusion") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    request_id: Optional[str] = None,
    client_id: Optional[str] = None,
    capability: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Create a log context dictionary for use with the ``extra`` parameter.

    Example:
        >>> logger.warning(
        ...     "Rate limit exceeded",
        ...     extra=get_log_context(client_id="1.2.3.4", capability="image"),
        ... )
    """
    context = {
        "request_id": request_id,
        "client_id": client_id,
        "capability": capability,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
