"""Logging configuration.

Signup logs carry subscriber addresses, so every renderer chain runs
``mask_emails`` first. Full addresses only appear at DEBUG level.
"""

import logging
import sys
from typing import Any

import structlog

from healthscan.settings import settings

# Event keys whose values are subscriber email addresses
EMAIL_KEYS = ("email", "to", "referrer_email")


def _mask(address: str) -> str:
    local, sep, domain = address.partition("@")
    if not sep:
        return address
    return f"{local[:2]}***@{domain}"


def mask_emails(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor hiding the local part of email addresses."""
    if settings.log_level == "DEBUG":
        return event_dict
    for key in EMAIL_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str):
            event_dict[key] = _mask(value)
    return event_dict


def configure_logging() -> None:
    """Configure structured logging for the API, CLI and background jobs."""
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        mask_emails,
    ]

    if settings.log_format == "json":
        processors = shared + [
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared + [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # uvicorn, httpx and sqlalchemy log through the standard library
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
