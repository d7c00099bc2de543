"""Logging setup shared by every martscout module.

Handlers are attached once, to the ``martscout`` package logger. Module
loggers carry no handlers of their own and propagate to it, so a single
rotating log file is opened per process.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

PACKAGE_LOGGER = "martscout"
LOG_DIR = os.getenv("MARTSCOUT_LOG_DIR", "logs")
LOG_FILE = os.path.join(LOG_DIR, "martscout.log")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
MAX_LOG_BYTES = 5_000_000
LOG_BACKUPS = 5


def _package_logger() -> logging.Logger:
    package = logging.getLogger(PACKAGE_LOGGER)
    if package.handlers:
        return package

    package.setLevel(DEFAULT_LEVEL)
    formatter = logging.Formatter(LOG_FORMAT)

    os.makedirs(LOG_DIR, exist_ok=True)
    file_handler = RotatingFileHandler(
        LOG_FILE,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    console_handler = logging.StreamHandler()
    for handler in (file_handler, console_handler):
        handler.setFormatter(formatter)
        package.addHandler(handler)

    return package


def get_logger(name: str) -> logging.Logger:
    """Return the logger for ``name``, nested under the package logger.

    ``__main__`` and other foreign names are re-rooted below ``martscout`` so
    their records reach the shared handlers.
    """

    _package_logger()
    if name != PACKAGE_LOGGER and not name.startswith(f"{PACKAGE_LOGGER}."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
