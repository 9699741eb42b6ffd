"""Structured logging setup for the infrastructure monitoring service."""

import logging
import sys

import structlog


def setup_logging(service_name: str, log_level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog and stdlib logging.

    Every event emitted afterwards carries ``service=<service_name>``, so
    alert and collection events can be told apart from those of other
    services sharing the same sink.
    """
    level = logging.getLevelName(log_level.upper())
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs or log_level.upper() == "DEBUG"
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # uvicorn and nats log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.contextvars.bind_contextvars(service=service_name)
    structlog.get_logger(service_name).info("Logging configured", log_level=log_level)
