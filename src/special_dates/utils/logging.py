"""Logging setup for the special_dates CLI."""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

from .exceptions import ConfigurationError

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"

# Libraries whose INFO output drowns ours
NOISY_LOGGERS = ("msal", "urllib3", "msal_extensions")

# Occasion names and icons are printed with emojis; keep Windows consoles from choking
if sys.stdout and hasattr(sys.stdout, "reconfigure"):
    try:
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    except (AttributeError, ValueError, OSError):
        pass


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ConfigurationError(f"Unknown log level: {level}")
    return resolved


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """
    Configure the ``special_dates`` logger tree.

    Console records go to stderr so command output on stdout stays parseable.
    The optional file always receives DEBUG and above.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path; parent directories are created

    Returns:
        The package logger
    """
    console_level = _resolve_level(level)
    logger = logging.getLogger("special_dates")
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(console_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(console_level, logging.WARNING))

    return logger
