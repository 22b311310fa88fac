"""
Logging setup for the selfswap updater.

Every run writes to three places:
- an application log file with plain ``[LEVEL] message`` lines; its path is
  handed to the relaunched application so it can show what happened
- stdout for records below ERROR (plain text or JSON)
- stderr for ERROR and above
"""

from __future__ import annotations

import json
import logging
import sys
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from selfswap.config import LoggingConfig

LOGGER_NAME = "selfswap"

# Default log format for plain stream output
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Format of the application log file lines
APPLICATION_LOG_FORMAT = "[%(levelname)s] %(message)s"

_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        "asctime",
    }
)


class JSONFormatter(logging.Formatter):
    """
    A logging formatter that outputs log records as JSON objects.

    Each log record is formatted as a JSON object with consistent fields:
    - timestamp: ISO 8601 formatted timestamp in UTC
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - logger: Logger name
    - message: Log message
    - Additional fields from the record's extra dict
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            JSON-formatted string representation of the log record.
        """
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Fields passed via the `extra` parameter in logging calls
        for key in set(record.__dict__.keys()) - _RESERVED_RECORD_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class _BelowLevelFilter(logging.Filter):
    """Pass only records strictly below a level."""

    def __init__(self, level: int) -> None:
        super().__init__()
        self._level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self._level


def create_application_log_file() -> Path:
    """
    Create an empty temporary file for the application log.

    Returns:
        Path to the new file. The file is not removed by the updater; the
        relaunched application owns it afterwards.
    """
    handle = tempfile.NamedTemporaryFile(
        mode="w", prefix="selfswap-", suffix=".log", delete=False
    )
    handle.close()
    return Path(handle.name)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    log_file: Path | str | None = None,
    level: str = "INFO",
    json_format: bool = False,
    log_to_stdout: bool = True,
    stdout: Any = None,
    stderr: Any = None,
) -> logging.Logger:
    """
    Configure the logging system for the updater.

    Args:
        config: Optional LoggingConfig object with logging settings.
            If provided, overrides level, json_format and log_to_stdout.
        log_file: Application log file. No file handler when None.
        level: Default log level if no config is provided.
        json_format: Whether to use JSON formatting on stdout.
        log_to_stdout: Whether to log informational records to stdout.
        stdout: Stream for informational records (default: sys.stdout).
        stderr: Stream for errors (default: sys.stderr).

    Returns:
        The root logger configured for the selfswap package.

    Example:
        >>> from selfswap.logging import setup_logging
        >>> logger = setup_logging(level="DEBUG", log_file="/tmp/update.log")
        >>> logger.info("Waiting for launcher to close...")
    """
    if config is not None:
        log_level = "DEBUG" if config.debug_mode else config.level.upper()
        json_format = config.json_format
        log_to_stdout = config.log_to_stdout
    else:
        log_level = level.upper()

    numeric_level = getattr(logging, log_level, logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(APPLICATION_LOG_FORMAT))
        logger.addHandler(file_handler)

    if log_to_stdout:
        out_handler = logging.StreamHandler(stdout or sys.stdout)
        out_handler.setLevel(numeric_level)
        out_handler.addFilter(_BelowLevelFilter(logging.ERROR))
        if json_format:
            out_handler.setFormatter(JSONFormatter())
        else:
            out_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        logger.addHandler(out_handler)

    err_handler = logging.StreamHandler(stderr or sys.stderr)
    err_handler.setLevel(logging.ERROR)
    if json_format:
        err_handler.setFormatter(JSONFormatter())
    else:
        err_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    logger.addHandler(err_handler)

    # Prevent propagation to root logger to avoid duplicate logs
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: The name for the logger, typically __name__ of the calling module.
            The "selfswap." prefix is added automatically if not present.

    Returns:
        A configured logger instance.
    """
    if not name.startswith(LOGGER_NAME):
        name = f"{LOGGER_NAME}.{name}"

    return logging.getLogger(name)
