"""Structured logging for the matching core."""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from src.config import settings

# Third-party loggers that flood the output at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "uvicorn.access")


def _add_app_context(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("app", settings.APP_NAME)
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def configure_logging(level: Optional[str] = None, environment: Optional[str] = None) -> None:
    """
    Configure structlog on top of the standard library logger.

    Every line carries the app name, environment, ISO timestamp and any
    request values bound with :func:`bind_request_context`. Development
    renders for the console, everything else as JSON lines.

    Args:
        level: Log level name, defaults to ``settings.LOG_LEVEL``.
        environment: Environment name, defaults to ``settings.ENVIRONMENT``.
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    environment = (environment or settings.ENVIRONMENT).lower()
    log_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(format="%(message)s", level=log_level, stream=sys.stdout)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(log_level if settings.DEBUG else logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_app_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer = (
        structlog.dev.ConsoleRenderer() if environment == "development" else structlog.processors.JSONRenderer()
    )
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named ``name`` with ``initial_values`` bound."""
    return structlog.get_logger(name).bind(**initial_values)  # type: ignore


def bind_request_context(**values: Any) -> None:
    """Bind values (e.g. the acting profile id) to every log line of the current request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)


def log_error(
    logger: structlog.stdlib.BoundLogger,
    error: Exception,
    message: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log an exception as one structured error event.

    Core errors contribute their ``code`` and ``details``; ``extra`` is
    merged in without being modified.
    """
    context = dict(extra or {})
    context.update(error_type=type(error).__name__, error_message=str(error))
    for attr, key in (("code", "error_code"), ("details", "error_details")):
        if hasattr(error, attr):
            context[key] = getattr(error, attr)

    logger.error(message or "An error occurred", **context, exc_info=error)
