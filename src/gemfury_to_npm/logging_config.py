"""
gemfury-to-npm Logging Configuration

Configurable logging with debug mode support. Gemfury API keys travel inside
request URLs, so every handler masks secrets before writing.
"""

import os
import logging
import sys
from pathlib import Path
from typing import Optional

from gemfury_to_npm.ui import mask_secrets


LOGGER_NAME = "gemfury_to_npm"

# Check for debug mode
DEBUG_MODE = os.environ.get("GEMFURY_TO_NPM_DEBUG", "").lower() in ("1", "true", "yes")

CONSOLE_FORMAT = "%(message)s"
DEBUG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s"


class SecretMaskingFormatter(logging.Formatter):
    """Formatter that masks secrets in log messages."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        return mask_secrets(message)


class CurrentStderrHandler(logging.StreamHandler):
    """Writes to whatever sys.stderr is at emit time.

    The progress display swaps sys.stderr while it is live, so records
    printed during a run land above the bar instead of through it.
    """

    def __init__(self):
        logging.Handler.__init__(self)

    @property
    def stream(self):
        return sys.stderr


def _level_from_env() -> Optional[int]:
    name = os.environ.get("GEMFURY_TO_NPM_LOG_LEVEL", "").upper()
    level = logging.getLevelName(name) if name else None
    return level if isinstance(level, int) else None


def resolve_level(level: Optional[int] = None) -> int:
    """Explicit level, else debug mode, else GEMFURY_TO_NPM_LOG_LEVEL, else WARNING."""
    if level is not None:
        return level
    if DEBUG_MODE:
        return logging.DEBUG
    return _level_from_env() or logging.WARNING


def _console_handler(level: int) -> logging.Handler:
    handler = CurrentStderrHandler()
    handler.setLevel(level)
    verbose = DEBUG_MODE or level <= logging.DEBUG
    handler.setFormatter(SecretMaskingFormatter(DEBUG_FORMAT if verbose else CONSOLE_FORMAT))
    return handler


def _file_handler(log_file: Path) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(SecretMaskingFormatter(FILE_FORMAT))
    return handler


def setup_logging(
    level: Optional[int] = None,
    log_file: Optional[Path] = None,
    quiet: bool = False
) -> logging.Logger:
    """Configure the package logger for one CLI invocation.

    The console shows records at ``level``; a log file, when given, always
    records everything down to DEBUG so a failed run can be reconstructed.
    Calling it again replaces the handlers of the previous call.

    Args:
        level: Console level, see resolve_level for the default
        log_file: Optional path to a log file
        quiet: If True, nothing is written to the console

    Returns:
        The package logger
    """
    level = resolve_level(level)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if log_file else level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if not quiet:
        logger.addHandler(_console_handler(level))
    if log_file:
        logger.addHandler(_file_handler(log_file))
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """Get a logger under the package namespace.

    Args:
        name: Logger name (will be prefixed with 'gemfury_to_npm.')

    Returns:
        Logger instance
    """
    if not name.startswith(LOGGER_NAME):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)

