"""
Logging for the chatrelay package.

Everything logs under the ``chatrelay`` logger: colored lines on stdout, plus
a plain file with call sites when ``LOG_FILE`` is set. Request/response
bodies are never logged, only sizes, providers and categories.
"""

import logging
import sys
from pathlib import Path

from chatrelay.config.settings import Settings

PACKAGE_LOGGER = "chatrelay"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"


class ColoredFormatter(logging.Formatter):
    """Console formatter that tints the level name."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname)
        if color is None:
            return super().format(record)
        # The file handler sees the same record; tint a copy
        tinted = logging.makeLogRecord(record.__dict__)
        tinted.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(tinted)


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(settings: Settings) -> None:
    """
    Install handlers on the ``chatrelay`` logger. Safe to call twice.

    Args:
        settings: Supplies ``log_level`` and the optional ``log_file``
    """
    level = getattr(logging, settings.log_level)
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    package_logger.handlers.clear()

    package_logger.addHandler(
        _handler(
            logging.StreamHandler(sys.stdout),
            level,
            ColoredFormatter(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT),
        )
    )

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        package_logger.addHandler(
            _handler(
                logging.FileHandler(log_path),
                level,
                logging.Formatter(fmt=FILE_FORMAT, datefmt=DATE_FORMAT),
            )
        )

    package_logger.propagate = False

    package_logger.info(f"chatrelay logging at {settings.log_level}")
    if settings.log_file:
        package_logger.info(f"Also writing logs to {settings.log_file}")


def get_logger(name: str) -> logging.Logger:
    """
    Logger for a module, always under ``chatrelay``.

    ``chatrelay.tools.weather`` is returned as-is; a bare ``weather`` becomes
    ``chatrelay.weather``.
    """
    if name == PACKAGE_LOGGER or name.startswith(f"{PACKAGE_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
