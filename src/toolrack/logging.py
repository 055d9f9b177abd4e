"""Logging setup for toolrack.

Loggers configured here do not propagate and never get duplicate handlers
across repeated initializations.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from toolrack.config import LogLevel

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logger(
    name: str = "toolrack",
    *,
    log_level: LogLevel | str = LogLevel.INFO,
    log_file: Path | str | None = None,
) -> logging.Logger:
    """Configure and return ``name``; child loggers such as ``toolrack.tools`` inherit it.

    Writes to ``log_file`` when given, otherwise to stderr.
    """

    logger = logging.getLogger(name)
    level_value = _to_logging_level(log_level)
    logger.setLevel(level_value)
    logger.propagate = False

    if not logger.handlers:
        handler: logging.Handler
        if log_file is not None:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(path, encoding="utf-8")
        else:
            handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    for handler in logger.handlers:
        handler.setLevel(level_value)
    return logger


def _to_logging_level(value: LogLevel | str) -> int:
    mapping = {
        LogLevel.DEBUG: logging.DEBUG,
        LogLevel.INFO: logging.INFO,
        LogLevel.WARNING: logging.WARNING,
        LogLevel.ERROR: logging.ERROR,
    }
    if isinstance(value, LogLevel):
        return mapping[value]
    if isinstance(value, str):
        try:
            return mapping[LogLevel(value.lower())]
        except ValueError:
            return logging.WARNING
    return logging.WARNING


__all__ = ["LOG_FORMAT", "configure_logger", "_to_logging_level"]
