"""Logging configuration for twinsync.

Application loggers follow the configured level; chatty third-party
libraries are held at WARNING.
"""

import logging
import sys
from typing import Literal

from twinsync.settings import get_settings

NOISY_LOGGERS = [
    "alembic",
    "alembic.runtime.migration",
    "apscheduler",
    "apscheduler.executors.default",
    "apscheduler.scheduler",
    "httpcore",
    "httpx",
    "asyncio",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
]

# Per-logger levels for noisy libraries
NOISY_LOGGER_LEVELS = {
    # "Run time of job ... next run at" on every sync tick
    "apscheduler.executors.default": logging.ERROR,
}


def suppress_noisy_loggers() -> None:
    """Hold third-party loggers at WARNING (or their configured override)."""
    for logger_name in NOISY_LOGGERS:
        logger = logging.getLogger(logger_name)
        logger.setLevel(NOISY_LOGGER_LEVELS.get(logger_name, logging.WARNING))
        logger.handlers.clear()


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
) -> None:
    """Configure application logging.

    Args:
        level: Override log level (defaults to settings.log_level)
    """
    settings = get_settings()
    log_level = level or settings.log_level

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, log_level))
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)s | %(name)s | %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root_logger.addHandler(console_handler)

    logging.getLogger("twinsync").setLevel(getattr(logging, log_level))

    suppress_noisy_loggers()


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
