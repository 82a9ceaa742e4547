"""
AuthKit Logging
===============
Structured logging setup for services embedding the authentication core.

Usage:
    from authkit_core.logging import setup_logging, mask_identifier

    setup_logging(service_name="authkit-api")
    logger = structlog.get_logger(__name__)
    logger.info("challenge_created", challenge_id="...", sent_to=mask_identifier(value))
"""

import logging
import sys

import structlog


def setup_logging(
    service_name: str,
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        service_name: Name bound into every event as ``service``
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines (production) instead of console output
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)

    structlog.get_logger(__name__).info("logging_configured", service=service_name, level=level.upper())


def mask_identifier(value: str) -> str:
    """
    Mask a phone number or email for display and logs.

    ``+14155551234`` -> ``+1415****34``, ``john@example.com`` -> ``jo***@example.com``
    """
    if "@" in value:
        local, _, domain = value.partition("@")
        visible = local[:2] if len(local) > 2 else local[:1]
        return f"{visible}***@{domain}"

    if len(value) <= 6:
        return "*" * len(value)
    return f"{value[:5]}****{value[-2:]}"
