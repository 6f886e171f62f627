"""Structured logging for the engine and its worker processes."""

import logging

import structlog

from homekeeper.config import Settings

SERVICE_NAME = "homekeeper"


def setup_logging(settings: Settings) -> None:
    """Configure structlog and bind process-wide context.

    Every event carries ``service`` and ``environment`` so records from the
    optimizer worker and an embedding app can share one sink.
    """
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=SERVICE_NAME, environment=settings.environment)

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
