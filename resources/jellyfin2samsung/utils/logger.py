"""
Logging setup for Jellyfin2Samsung.

Console output is optionally colored with the same ANSI palette the CLI uses
for its status lines; a rotating file handler keeps a persistent log in the
platform log directory.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Union

from ..config.settings import LogLevel

LOGGER_NAME = "jellyfin2samsung"

COLORS = {
    "RED": "\033[0;31m",
    "GREEN": "\033[0;32m",
    "YELLOW": "\033[1;33m",
    "BLUE": "\033[0;34m",
    "PURPLE": "\033[0;35m",
    "NC": "\033[0m",
}

_LEVEL_COLORS = {
    logging.DEBUG: COLORS["PURPLE"],
    logging.INFO: COLORS["BLUE"],
    logging.WARNING: COLORS["YELLOW"],
    logging.ERROR: COLORS["RED"],
    logging.CRITICAL: COLORS["RED"],
}


class ColoredFormatter(logging.Formatter):
    """Formatter that wraps the level name in an ANSI color."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = _LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{COLORS['NC']}"


def setup_logging(colored: bool = True,
                  log_file: Optional[Union[str, Path]] = None,
                  level: Union[LogLevel, str] = LogLevel.INFO) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        colored: Use ANSI colors on the console when attached to a terminal
        log_file: Optional path of a rotating log file
        level: Minimum level to emit

    Returns:
        The configured package logger
    """
    level_name = level.value if isinstance(level, LogLevel) else str(level).upper()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level_name)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console_format = "%(levelname)s: %(message)s"
    if colored and sys.stderr.isatty():
        console.setFormatter(ColoredFormatter(console_format))
    else:
        console.setFormatter(logging.Formatter(console_format))
    logger.addHandler(console)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=1024 * 1024, backupCount=3, encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
        ))
        logger.addHandler(file_handler)

    return logger


def get_logger() -> logging.Logger:
    """Get the package logger."""
    return logging.getLogger(LOGGER_NAME)
