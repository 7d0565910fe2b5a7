"""
Financial Sync - Structured JSON Logging

Provides structured logging for production environments.
Outputs JSON format for log aggregation (Datadog, CloudWatch, etc.)
"""

import logging
import json
import sys
import os
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional
import traceback


_sync_run_id: ContextVar[Optional[str]] = ContextVar("sync_run_id", default=None)
_organization_id: ContextVar[Optional[str]] = ContextVar("organization_id", default=None)

_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName"
}


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs JSON logs.
    Compatible with log aggregation services.
    """

    def __init__(self, service_name: str = "financial-sync"):
        super().__init__()
        self.service_name = service_name
        self.environment = os.environ.get("ENVIRONMENT", "development")
        self.hostname = os.environ.get("HOSTNAME", "unknown")

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
            "hostname": self.hostname,
        }

        log_data["location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info) if record.exc_info[0] else None,
            }

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class SyncContextFilter(logging.Filter):
    """
    Adds the current sync run context to log records.

    Context lives in ContextVars so concurrent sync runs on one event loop
    never see each other's identifiers.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.sync_run_id = _sync_run_id.get()
        record.organization_id = _organization_id.get()
        return True


def set_sync_context(sync_run_id: Optional[str] = None, organization_id: Optional[str] = None):
    """Set sync context for logging."""
    _sync_run_id.set(sync_run_id)
    _organization_id.set(organization_id)


def clear_sync_context():
    """Clear sync context."""
    _sync_run_id.set(None)
    _organization_id.set(None)


@contextmanager
def sync_context(sync_run_id: str, organization_id: str) -> Iterator[None]:
    """Bind sync context for the duration of a block."""
    run_token = _sync_run_id.set(sync_run_id)
    org_token = _organization_id.set(organization_id)
    try:
        yield
    finally:
        _sync_run_id.reset(run_token)
        _organization_id.reset(org_token)


def get_sync_context() -> Dict[str, Optional[str]]:
    return {
        "sync_run_id": _sync_run_id.get(),
        "organization_id": _organization_id.get(),
    }


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = "financial-sync"
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production)
        service_name: Service name for log aggregation

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))

    if json_format:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(sync_run_id)s] %(message)s"
        ))

    handler.addFilter(SyncContextFilter())
    root_logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)
