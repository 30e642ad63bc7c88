"""Logging setup for applications embedding contextkit.

Library modules only call ``logging.getLogger(__name__)``; the host application
calls setup_logging() once to attach handlers to the ``contextkit`` logger.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "contextkit"

_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


def setup_logging(
    level: str = "INFO",
    log_file: str | Path | None = None,
    *,
    console: Console | None = None,
) -> logging.Logger:
    """Configure the ``contextkit`` logger and return it.

    Safe to call more than once: existing handlers are replaced, never duplicated.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path for a size-rotated log file (5 MB x 5 backups).
        console: Rich console for terminal output (stderr by default).
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level.upper())
    logger.propagate = False

    rich_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    rich_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(rich_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(file_handler)

    logger.debug("Logging configured (level=%s, file=%s)", level.upper(), log_file)
    return logger
