from __future__ import annotations

import logging
import sys

import structlog

from lendops.core.config import settings
from lendops.shared.enums import Env

SERVICE_NAME = "lendops"

# Third-party loggers that drown out event-handler and job logs at INFO.
_NOISY_LOGGERS = ("sqlalchemy.engine", "alembic.runtime.migration", "uvicorn.access")


def _add_service(_logger, _method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging() -> None:
    """Configure structlog for the API, the event dispatcher threads and the job CLI.

    Request and actor ids are bound through contextvars, so every line written
    while handling a request carries them. Production emits JSON; dev and test
    render for the console.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if settings.env == Env.prod:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
