"""structlog setup shared by the server entry point and scripts."""

import logging

import structlog


def configure_logging(log_format: str = "console", log_level: str = "INFO"):
    """
    Configure structlog processors.

    Args:
        log_format: "json" for machine-readable output, anything else for console
        log_level: Minimum level name (DEBUG, INFO, WARNING, ERROR)
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            renderer
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
    )


def short_hash(visitor_hash: str) -> str:
    """Truncate a visitor identifier for log output."""
    return visitor_hash[:12]
