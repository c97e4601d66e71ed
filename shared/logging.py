"""
Structured logging for the Click Ledger.

Every event carries the service name and, inside a request, the request id
and the authenticated user id. Bearer tokens must never reach a log line:
``redact_secrets`` masks them wherever they appear in an event.
"""

import re
import sys
import structlog
import logging
import uuid
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variables for correlation IDs
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)

SECRET_FIELDS = frozenset({"token", "access_token", "authorization", "password"})
REDACTED = "[redacted]"
REQUEST_ID_PATTERN = re.compile(r"[A-Za-z0-9._:-]{1,128}")


def configure_logging(service_name: str, log_level: str = "info", log_format: str = "json") -> None:
    """Configure structured logging for a service.

    ``log_format`` is ``json`` for machine-readable output or ``console``
    for coloured development output.
    """
    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            service_context(service_name),
            add_correlation_context,
            redact_secrets,
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Repeated calls replace the handlers installed by earlier ones.
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )


def service_context(service_name: str):
    """Processor stamping the owning service on every event."""

    def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service_context


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add correlation context to log events."""
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)

    user_id = user_id_var.get()
    if user_id:
        event_dict.setdefault("user_id", user_id)

    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask credential-bearing fields and any inline bearer token, at any depth."""
    return _redact(event_dict)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if isinstance(key, str) and key.lower() in SECRET_FIELDS else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(item) for item in value)
    if isinstance(value, str) and "Bearer " in value:
        return mask_bearer(value)
    return value


def mask_bearer(text: str) -> str:
    """Replace the token following each ``Bearer`` with a placeholder."""
    parts = text.split("Bearer ")
    masked = [parts[0]]
    for part in parts[1:]:
        _, space, rest = part.partition(" ")
        masked.append(f"{REDACTED}{space}{rest}")
    return "Bearer ".join(masked)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context.

    A caller-supplied id is kept only when it is short and made of safe
    characters; otherwise a fresh one is generated.
    """
    if not is_valid_request_id(request_id):
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def is_valid_request_id(request_id: Optional[str]) -> bool:
    return bool(request_id) and REQUEST_ID_PATTERN.fullmatch(request_id) is not None


def set_user_context(user_id: Optional[str] = None):
    """Set user context in logging."""
    if user_id:
        user_id_var.set(user_id)


def clear_context():
    """Clear all context variables."""
    request_id_var.set(None)
    user_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
