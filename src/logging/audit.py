"""Structured JSON audit logging for the game API proxy.

Logs go to stdout as JSON lines (12-factor/cloud-native pattern).
Optional file output via AUDIT_LOG_FILE env var.

Every request gets a short id (echoed as X-Request-Id) and one
"Request completed" line timing the whole pipeline, including requests
the origin gate or rate limiter turned away.
"""

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from contextvars import ContextVar

from fastapi import Request
from starlette.middleware.base import RequestResponseEndpoint
from starlette.responses import Response

# Request-scoped context for correlating log entries
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

LOGGER_NAME = "gateway.audit"


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(""),
        }
        # Merge any extra fields passed via `extra={}` kwarg
        if hasattr(record, "audit_data"):
            log_entry.update(record.audit_data)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", log_file: str = "") -> None:
    """Configure the audit logger with JSON output."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()

    formatter = JSONFormatter()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    logger.addHandler(stdout_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Prevent propagation to root logger (avoids duplicate output)
    logger.propagate = False


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


class RequestTimer:
    """Context manager to measure request latency."""

    def __init__(self):
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed_ms = round((time.perf_counter() - self.start_time) * 1000, 2)


async def audit_request(request: Request, call_next: RequestResponseEndpoint) -> Response:
    """HTTP middleware: assign a request id and log status and latency."""
    rid = generate_request_id()
    request_id_var.set(rid)

    with RequestTimer() as timer:
        response = await call_next(request)

    get_audit_logger().info(
        "Request completed",
        extra={"audit_data": {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "client_ip": request.client.host if request.client else "unknown",
            "latency_ms": timer.elapsed_ms,
        }},
    )
    response.headers["X-Request-Id"] = rid
    return response
