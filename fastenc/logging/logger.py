# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Structured JSON logging for fastenc.

Every entry is one JSON line carrying at least:
  ts: ISO 8601 UTC timestamp
  level: level name
  module: logger name
  msg: formatted message

Context passed through ``extra=`` is merged into the same object, which is how
the conversion pass reports layer names, counts and failure conditions.

Library modules log through ``logging.getLogger(__name__)`` and stay silent
until someone attaches a handler. ``configure_logging`` attaches the JSON
handler to the ``fastenc`` package logger (the CLI does this on startup);
``get_logger`` does the same for a single named logger.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO

PACKAGE_LOGGER = "fastenc"

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Attributes every LogRecord carries; anything else came in through `extra`.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "msg": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                entry[key] = value

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _resolve_log_level(level_name: str) -> int:
    """Turn a level name string into the corresponding logging constant."""
    upper = level_name.upper()
    if upper not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level '{level_name}'. Must be one of: {', '.join(sorted(_VALID_LOG_LEVELS))}"
        )
    return getattr(logging, upper)


def _attach_handlers(
    logger: logging.Logger,
    level: int,
    log_file: Optional[Path],
    stream: TextIO,
) -> None:
    formatter = JsonFormatter()

    stream_handler = logging.StreamHandler(stream=stream)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def get_logger(
    name: str,
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Create a logger that writes JSON lines to stdout (and optionally a file).

    Calling this twice for the same name only updates the level; handlers are
    never stacked.

    Args:
        name: Logger name, typically ``__name__`` of the caller.
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL.
        log_file: Optional path to a log file.

    Returns:
        A configured ``logging.Logger``.
    """
    logger = logging.getLogger(name)
    level = _resolve_log_level(log_level)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    _attach_handlers(logger, level, log_file, sys.stdout)
    logger.propagate = False
    return logger


def configure_logging(log_level: str = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """
    Route every ``fastenc.*`` logger through the JSON formatter.

    Library output goes to stderr so it never mixes with data a caller may
    print on stdout. Re-running replaces the previous handlers.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    level = _resolve_log_level(log_level)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    _attach_handlers(logger, level, log_file, sys.stderr)
    logger.propagate = False
    return logger
