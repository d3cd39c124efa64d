# cmdsave/logging_config.py
"""
Opt-in logging helpers for cmdsave.

The package logger carries only a NullHandler until an application (or the
CLI) calls setup_logging().
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

PACKAGE_LOGGER = "cmdsave"
LOG_DIR_ENV_VAR = "CMDSAVE_LOG_DIR"
LOG_FILENAME = "cmdsave.log"

FORMATS = {
    "simple": "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    "detailed": "%(asctime)s %(levelname)-8s %(name)s [%(filename)s:%(lineno)d]: %(message)s",
}

# Handlers installed by setup_logging(), removed again on the next call
_installed_handlers: list[logging.Handler] = []


def get_log_file_path() -> Path:
    """Return the log file used when setup_logging(file=True) is called."""
    log_dir = os.environ.get(LOG_DIR_ENV_VAR)
    base = Path(log_dir).expanduser() if log_dir else Path.home() / ".cmdsave" / "logs"
    return base / LOG_FILENAME


def setup_logging(
    level: str | int = "INFO",
    *,
    console: bool = True,
    file: bool = False,
    format: str = "simple",
    format_string: str | None = None,
    propagate: bool = True,
) -> logging.Logger:
    """
    Configure the cmdsave logger.

    Args:
        level: Logging level name or number
        console: Attach a stderr StreamHandler
        file: Attach a FileHandler writing to get_log_file_path()
        format: "simple" or "detailed" (adds file:line)
        format_string: Explicit format; overrides ``format``
        propagate: Whether records also reach the root logger

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)

    for handler in _installed_handlers:
        logger.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    if format_string is None:
        if format not in FORMATS:
            raise ValueError(f"Unknown log format '{format}'. Valid formats: {sorted(FORMATS)}")
        format_string = FORMATS[format]
    formatter = logging.Formatter(format_string)

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        _installed_handlers.append(stream_handler)

    if file:
        log_path = get_log_file_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        _installed_handlers.append(file_handler)

    for handler in _installed_handlers:
        logger.addHandler(handler)

    logger.setLevel(level.upper() if isinstance(level, str) else level)
    logger.propagate = propagate
    return logger


def disable_logging() -> None:
    """Silence all cmdsave log output (useful in tests)."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in _installed_handlers:
        logger.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()
    # Child loggers inherit this level
    logger.setLevel(logging.CRITICAL + 1)
    logger.propagate = False
