"""
Structured logging utilities for function logs.

Emits one JSON object per line so CloudWatch Logs Insights and the Netlify
log drain can filter on fields.
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from typing import Optional
import uuid

# Context variable for request correlation
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Authenticated user of the current request (set once the bearer token resolves)
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

# Headers set by the hosting platforms, checked in order
_REQUEST_ID_HEADERS = ("x-request-id", "x-nf-request-id", "x-vercel-id")

_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "asctime", "taskName",
))

# Stripe keys, webhook secrets and Supabase access tokens never reach the logs
_SECRET_PATTERN = re.compile(
    r"\b(?:sk|rk)_(?:live|test)_[A-Za-z0-9]+|\bwhsec_[A-Za-z0-9]+|Bearer\s+[A-Za-z0-9._~+/-]+=*"
)


def redact(value: str) -> str:
    """Mask secrets inside a log string."""
    return _SECRET_PATTERN.sub("[REDACTED]", value)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
            "request_id": request_id_var.get(""),
            "function_name": os.environ.get("AWS_LAMBDA_FUNCTION_NAME", ""),
        }

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = redact(value) if isinstance(value, str) else value

        # Add exception info
        if record.exc_info:
            log_entry["exception"] = redact(self.formatException(record.exc_info))

        return json.dumps(log_entry, default=str)


def configure_structured_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure structured JSON logging.

    Call this at the start of your handler.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Add structured handler
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(handler)

    return root_logger


def set_request_id(event: dict) -> str:
    """
    Extract or generate request ID and set in context.

    Args:
        event: Function event

    Returns:
        Request ID string
    """
    # Try API Gateway request ID
    request_id = (event.get("requestContext") or {}).get("requestId")

    # Try platform headers
    if not request_id:
        headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
        for header in _REQUEST_ID_HEADERS:
            if headers.get(header):
                request_id = headers[header]
                break

    # Generate if not present
    if not request_id:
        request_id = str(uuid.uuid4())

    request_id_var.set(request_id)
    user_id_var.set("")
    return request_id


def set_user_id(user_id: str) -> None:
    """Attach the authenticated user to the rest of this request's logs."""
    user_id_var.set(user_id or "")


def log_api_request(
    logger: logging.Logger,
    method: str,
    path: str,
    status_code: int,
    latency_ms: float,
    user_id: Optional[str] = None,
) -> None:
    """Log API request with standard fields."""
    logger.info(
        f"{method} {path} -> {status_code}",
        extra={
            "http_method": method,
            "path": path,
            "status_code": status_code,
            "latency_ms": latency_ms,
            "user_id": user_id or user_id_var.get("") or "anonymous",
        }
    )


def log_external_call(
    logger: logging.Logger,
    service: str,
    operation: str,
    success: bool,
    latency_ms: float,
    error: Optional[str] = None,
) -> None:
    """Log external service call."""
    level = logging.INFO if success else logging.WARNING
    logger.log(
        level,
        f"External call to {service}: {operation} -> {'success' if success else 'failed'}",
        extra={
            "service": service,
            "operation": operation,
            "success": success,
            "latency_ms": latency_ms,
            "error": error,
        }
    )


def log_webhook_outcome(
    logger: logging.Logger,
    event_id: str,
    event_type: str,
    outcome: str,
    latency_ms: float,
) -> None:
    """Log the final outcome of one Stripe event delivery."""
    level = logging.WARNING if outcome == "failed" else logging.INFO
    logger.log(
        level,
        f"Stripe event {event_type} ({event_id}) -> {outcome}",
        extra={
            "event_id": event_id,
            "event_type": event_type,
            "outcome": outcome,
            "latency_ms": latency_ms,
        }
    )
