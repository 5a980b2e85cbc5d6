"""Structured logging configuration using structlog."""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from geotrigger.core.config import get_settings

# WebAuthn material that must never reach the log stream
CREDENTIAL_FIELDS = frozenset({
    "signature",
    "authenticator_data",
    "client_data",
    "signature_payload",
    "authorization",
    "chain_signer_key",
})

# Libraries that log every request or frame at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "aio_pika", "aiormq")


def redact_credentials(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace credential values in a log event."""
    for key in CREDENTIAL_FIELDS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = "[redacted]"
    return event_dict


def setup_logging() -> None:
    """Configure structured logging for the API and the worker."""
    settings = get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_credentials,
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.debug:
        processors: list[Processor] = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    if not settings.debug:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger, optionally bound to context such as a rule id.

    Args:
        name: Logger name, usually the module's ``__name__``
        **initial_values: Context bound to every event of this logger

    Returns:
        Bound logger instance
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def short_key(public_key: str | None) -> str:
    """Shorten a wallet public key for log output."""
    if not public_key:
        return ""
    return f"{public_key[:8]}..." if len(public_key) > 12 else public_key
