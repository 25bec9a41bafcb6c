"""Loguru sink setup."""

import sys

from loguru import logger

from smart_resizer.config import Settings


def configure_logging(settings: Settings) -> None:
    """Replace loguru's default sink with a single stderr sink at the configured level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level.upper(),
        serialize=settings.log_json,
        backtrace=False,
        diagnose=False,
        enqueue=True,
    )
