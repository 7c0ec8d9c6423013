"""
Structured Logging with Structlog.

Provides JSON-formatted logs with request context. Secret-bearing fields are
truncated before rendering so raw API keys, tokens and passwords never reach
the log stream.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from mcp_gateway.config import settings

# Field names whose values are credentials
SECRET_FIELD_MARKERS = (
    "token",
    "secret",
    "password",
    "api_key",
    "authorization",
    "session_id",
    "auth_code",
)
_VISIBLE_SECRET_CHARS = 8


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application-level context to all log entries."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def truncate_secret(value: str) -> str:
    """Keep a short, non-usable prefix of a secret for correlation."""
    if len(value) <= _VISIBLE_SECRET_CHARS:
        return "***"
    return f"{value[:_VISIBLE_SECRET_CHARS]}..."


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Truncate string values of secret-like keys."""
    for key, value in event_dict.items():
        if key == "event" or not isinstance(value, str):
            continue
        lowered = key.lower()
        if any(marker in lowered for marker in SECRET_FIELD_MARKERS):
            event_dict[key] = truncate_secret(value)
    return event_dict


def setup_logging() -> None:
    """
    Configure structured logging with structlog.

    Logs are formatted as JSON for machine parsing with the following structure:
    {
        "event": "token_refreshed",
        "level": "info",
        "timestamp": "2026-01-08T12:00:00.123456Z",
        "logger": "mcp_gateway.services.token_manager",
        "service": "ads-mcp-gateway",
        "version": "0.1.0",
        ...additional context
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("account_resolved", user_id=user_id, rule="advertiser_id")
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Context manager for adding structured logging context.

    Usage:
        with log_context(request_id="req-123", user_id="user-456"):
            logger.info("processing_request")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        """Enter context - bind context variables."""
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit context - clear context variables."""
        structlog.contextvars.unbind_contextvars(*self.context.keys())
