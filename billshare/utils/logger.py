"""Logging setup shared by the API, the CLI script and the services."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from billshare.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process-wide logging once.

    Records go to stderr so the split report printed by the CLI on stdout
    stays machine-readable. Calling again with ``level`` only adjusts the
    root level.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        if level is not None:
            set_log_level(level)
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()

    logging.basicConfig(level=resolved_level, format=LOG_FORMAT, stream=sys.stderr)
    _LOGGER_INITIALIZED = True


def set_log_level(level: str) -> None:
    logging.getLogger().setLevel(level.upper())


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)
