"""Logging configuration using structlog.

Handlers log snake_case events with key-value context. Exchange credentials
travel through the same code paths, so values under credential-like keys are
masked before rendering.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.typing import EventDict, WrappedLogger

from chainfolio.config.settings import Settings, get_settings

REDACTED = "***"
SECRET_KEYS = frozenset(
    {
        "api_key",
        "api_secret",
        "secret",
        "signature",
        "api-sign",
        "x-gemini-signature",
        "x-gemini-payload",
        "x-cmc_pro_api_key",
        "x-api-key",
    }
)

# httpx logs every request line at INFO, query strings included
NOISY_LOGGERS = ("httpx", "httpcore")


def redact_secrets(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    """Mask credential values, including inside a ``headers`` mapping."""
    for key in list(event_dict):
        if key.lower() in SECRET_KEYS and event_dict[key]:
            event_dict[key] = REDACTED

    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {
            name: REDACTED if name.lower() in SECRET_KEYS else value
            for name, value in headers.items()
        }
    return event_dict


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog and stdlib logging from settings.

    Debug mode renders for the console; otherwise one JSON object per line.
    """
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if settings.debug:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.extend(
            [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    upstream_level = log_level if settings.debug else max(log_level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(upstream_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
