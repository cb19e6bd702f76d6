"""
Structured logging for the portal.

Provides:
- JSON log lines for log collectors, or plain lines for local development
- Request ID propagation via contextvars (works across threads and async code)
- Extra fields passed with extra={} merged into each JSON entry

Usage:
    from portal.utils.structured_logger import setup_structured_logging, get_logger

    setup_structured_logging(level="INFO", json_output=True)
    logger = get_logger(__name__)
    logger.warning("Account locked", extra={"account_id": "1234567"})
"""

import logging
import json
import sys
from datetime import datetime, timezone
from contextvars import ContextVar
from typing import Optional, Any, Dict

SERVICE_NAME = "session-guard-portal"

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)

# LogRecord attributes that are not user-supplied extras
_RECORD_ATTRS = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName',
})


def set_request_id(request_id: str) -> None:
    """Set request ID for current context."""
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    """Get request ID for current context."""
    return request_id_var.get()


def clear_request_id() -> None:
    """Clear request ID for current context."""
    request_id_var.set(None)


class JSONFormatter(logging.Formatter):
    """Formats each record as one JSON object.

    {
        "timestamp": "2024-01-21T15:30:00.123456Z",
        "level": "WARNING",
        "logger": "portal.services.login_attempts",
        "message": "Account locked",
        "request_id": "abc-123",
        "service": "session-guard-portal",
        "source": {...},
        "extra": {...}
    }
    """

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": get_request_id(),
            "service": self.service_name,
            "source": {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith('_'):
                continue
            try:
                json.dumps(value)
                extra_fields[key] = value
            except (TypeError, ValueError):
                extra_fields[key] = str(value)

        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class PlainFormatter(logging.Formatter):
    """Human-readable formatter: timestamp - logger - level - [request_id] message"""

    def format(self, record: logging.LogRecord) -> str:
        request_id = get_request_id()
        prefix = f"[{request_id}] " if request_id else ""
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')

        line = f"{timestamp} - {record.name} - {record.levelname} - {prefix}{record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_structured_logging(
    level: str = "INFO",
    json_output: bool = True,
    service_name: str = SERVICE_NAME
) -> None:
    """Configure the root logger once at application startup.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: JSON lines if True, plain text otherwise
        service_name: Service name included in JSON entries
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(service_name=service_name) if json_output else PlainFormatter())
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically get_logger(__name__))."""
    return logging.getLogger(name)
