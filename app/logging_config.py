"""
Structured logging with structlog.

JSON lines in production, colored console output when DEBUG is on. Work
that belongs to one Call (a render, a dispatch) runs inside
`call_context(call_id)` so every line it logs carries the id.
"""

import logging
import sys
from typing import Any

import structlog
from app.config import config

# Never written to logs, whatever the call site passes.
REDACTED_KEYS = frozenset({
    "client_secret",
    "api_key",
    "authorization",
    "signature",
    "full_audio",
})


def redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def configure_logging():
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    )

    # Provider SDKs log every HTTP request at INFO.
    for name in ("httpx", "httpcore", "openai", "stripe", "celery", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if config.DEBUG:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> Any:
    """
    Usage:
        logger = get_logger(__name__)
        logger.info("call_dispatched", call_id="...", conversation_id="...")
    """
    return structlog.get_logger(name)


def call_context(call_id: str, **extra: Any):
    """Bind `call_id` (and `extra`) to every log line inside the `with` block."""
    return structlog.contextvars.bound_contextvars(call_id=call_id, **extra)


configure_logging()

logger = get_logger("call_santa")
