"""Structured logging configuration using structlog.

Repository, facade and controller loggers are created with
get_logger(f"{__name__}.{Model}Repository") and friends; the name is bound to
every event as "logger_name" so per-model output can be filtered.
"""
import logging
import os
import sys

import structlog
from structlog.types import EventDict, Processor

from repokit.core.config import Settings, settings as default_settings


def _running_under_pytest() -> bool:
    return bool(
        "pytest" in os.environ.get("_", "")
        or os.environ.get("PYTEST_CURRENT_TEST")
        or "pytest" in sys.modules
    )


def _app_context(settings: Settings) -> Processor:
    def add_app_context(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
        """Add service and environment to log entries."""
        event_dict.setdefault("service", settings.otel_service_name)
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return add_app_context


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog for structured logging.

    JSON output in production, under pytest, or when LOG_FORMAT=json;
    colored console output otherwise.

    Args:
        settings: Settings to read from; the module-level settings when None
    """
    settings = settings or default_settings
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _app_context(settings),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_format == "json" or settings.is_production or _running_under_pytest():
        # exc_info becomes a structured "exception" list
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        # ConsoleRenderer pretty-prints exc_info on its own
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger, bound to its name as "logger_name" when one is given.

    The name is passed as an initial value so the logger stays lazy and picks
    up configure_logging() even when created at import time.
    """
    if name:
        return structlog.get_logger(logger_name=name)
    logger: structlog.BoundLogger = structlog.get_logger()
    return logger
