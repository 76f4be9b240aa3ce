"""Logging configuration: structlog on top of the stdlib root logger."""
import logging
import sys

import structlog

from storefront.core.config import settings

# Suppress noisy library loggers
_QUIET = ("kafka", "sqlalchemy.engine", "multipart")


def configure_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    level_name = (level or settings.LOG_LEVEL).upper()
    as_json = settings.LOG_JSON if json_logs is None else json_logs

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level_name, force=True)
    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if as_json:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        # ConsoleRenderer formats exc_info itself
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
