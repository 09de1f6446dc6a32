"""
Structured logging for the Plume RPC server.

Log records are emitted as one JSON object per line with a fixed set of base
fields (timestamp, level, logger, message) plus whatever was passed through
the ``extra`` argument of the logging call. All loggers live under the
``plume_rpc`` namespace so that a host application can configure or silence
the server with a single logger.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import IO, TYPE_CHECKING, Any

if TYPE_CHECKING:
    from plume_rpc.config import ServerConfig

ROOT_LOGGER_NAME = "plume_rpc"

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """
    A logging formatter that outputs log records as JSON objects.

    Each record becomes a JSON object with the fields:
    - timestamp: ISO 8601 timestamp in UTC
    - level: Log level name
    - logger: Logger name
    - message: Formatted log message
    - exception: Formatted traceback, when the record carries one
    - any fields supplied via ``extra``
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
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_ATTRS or value is None:
                continue
            log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(
    config: ServerConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = True,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """
    Configure the ``plume_rpc`` logger.

    Args:
        config: Optional ServerConfig; its ``log_level`` overrides ``level``.
        level: Log level used when no config is provided.
        json_format: Whether to emit JSON lines (default: True).
        stream: Output stream (default: stderr).

    Returns:
        The configured package logger.

    Example:
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("Server started", extra={"port": 8080})
    """
    log_level = (config.log_level if config is not None else level).upper()
    numeric_level = getattr(logging, log_level, logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(numeric_level)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    logger.addHandler(handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module, nested under the ``plume_rpc`` logger.

    Args:
        name: Logger name, typically ``__name__`` of the calling module.

    Returns:
        A logger instance.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
