"""
Structured Logging with Correlation IDs
=======================================

JSON-structured logging where every line carries a correlation id:
- HTTP requests: X-Request-ID header (generated when absent)
- Scheduled / manual runs: a cycle id ("cyc-...") set by the pipeline or
  the calibration loop for the duration of the run

Usage:
    from core.structured_logging import configure_structured_logging, cycle_scope

    configure_structured_logging()
    app.add_middleware(RequestCorrelationMiddleware)

    with cycle_scope("selection") as cycle_id:
        logger.info("Cycle started", extra={"period": "2026-10-19"})
"""

import json
import logging
import os
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

_correlation_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

LOG_FORMAT = os.getenv("LOG_FORMAT", "json")  # "json" or "text"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

REDACTED = "[REDACTED]"
SENSITIVE_KEY_PARTS = ("token", "secret", "password", "api_key", "apikey", "authorization", "webhook")


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def get_correlation_id() -> Optional[str]:
    """Current request or cycle id, if any."""
    return _correlation_ctx.get()


def set_correlation_id(correlation_id: Optional[str]) -> None:
    _correlation_ctx.set(correlation_id)


def generate_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:12]}"


def generate_cycle_id(kind: str = "cycle") -> str:
    """Cycle ids look like "cyc-selection-1a2b3c4d5e6f"."""
    return f"cyc-{kind}-{uuid.uuid4().hex[:12]}"


@contextmanager
def cycle_scope(kind: str) -> Iterator[str]:
    """
    Tag every log line inside the block with a fresh cycle id.

    Nested inside an HTTP request, the request id is restored on exit.
    """
    previous = get_correlation_id()
    cycle_id = generate_cycle_id(kind)
    set_correlation_id(cycle_id)
    try:
        yield cycle_id
    finally:
        set_correlation_id(previous)


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line:
    {"timestamp": "...", "level": "INFO", "logger": "slip_pipeline",
     "message": "...", "correlation_id": "cyc-selection-...", ... extra ...}
    """

    EXCLUDE_FIELDS = {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            entry["correlation_id"] = correlation_id

        entry["function"] = record.funcName
        entry["line"] = record.lineno

        for key, value in record.__dict__.items():
            if key not in self.EXCLUDE_FIELDS and not key.startswith("_"):
                entry[key] = self._sanitize_value(key, value)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)

    @staticmethod
    def _sanitize_value(key: str, value: Any) -> Any:
        if _is_sensitive_key(key):
            return REDACTED
        if isinstance(value, dict):
            return {k: REDACTED if _is_sensitive_key(str(k)) else v for k, v in value.items()}
        return value


class TextFormatter(logging.Formatter):
    """2026-10-19 10:00:01.123 [INFO] [cyc-selection-...] slip_pipeline:run_cycle:88 - message"""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        correlation_id = get_correlation_id() or "-"
        base = (
            f"{timestamp} [{record.levelname}] [{correlation_id}] "
            f"{record.name}:{record.funcName}:{record.lineno} - {record.getMessage()}"
        )
        if record.exc_info:
            base += f"\n{self.formatException(record.exc_info)}"
        return base


class RequestCorrelationMiddleware(BaseHTTPMiddleware):
    """Extract or generate X-Request-ID and echo it on the response."""

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(self.HEADER_NAME) or generate_request_id()
        set_correlation_id(request_id)
        try:
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = request_id
            return response
        finally:
            set_correlation_id(None)


def configure_structured_logging(level: Optional[str] = None, format_type: Optional[str] = None) -> None:
    """
    Configure the root logger once at startup.

    Args:
        level: DEBUG/INFO/WARNING/ERROR, defaults to LOG_LEVEL env var
        format_type: "json" or "text", defaults to LOG_FORMAT env var
    """
    level = level or LOG_LEVEL
    format_type = format_type or LOG_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if format_type.lower() == "json" else TextFormatter())
    root_logger.addHandler(handler)

    for noisy_logger in ["httpx", "httpcore", "apscheduler", "asyncio"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)
