"""
Logging configuration utilities for the water controller relay.
"""

import logging
import sys
from typing import Iterable, Optional, Union

from rich.console import Console
from rich.logging import RichHandler


LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

EXTERNAL_LOGGERS = ("websockets", "asyncio", "rich")


def parse_log_level(level: Union[str, int]) -> int:
    """
    Convert a level name (trace/debug/info/warn/error) or number to a
    logging level.

    Raises:
        ValueError: If the name is unknown
    """
    if isinstance(level, int):
        return level
    try:
        return LOG_LEVELS[level.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level!r}")


def setup_logger(
    name: str,
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    include_timestamp: bool = True,
    rich_output: bool = False,
) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    The returned logger is meant to be passed down to the components that
    log through it (or through its children).

    Args:
        name: Logger name
        level: Logging level
        format_string: Custom format string
        include_timestamp: Whether to include timestamp in logs
        rich_output: Render records with rich instead of plain text

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    if rich_output:
        handler: logging.Handler = RichHandler(
            console=Console(stderr=True),
            show_time=include_timestamp,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter(format_string or "%(name)s: %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stdout)
        if format_string is None:
            if include_timestamp:
                format_string = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            else:
                format_string = '%(name)s - %(levelname)s - %(message)s'
        handler.setFormatter(logging.Formatter(format_string))

    handler.setLevel(level)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def set_global_log_level(level: int, logger_names: Iterable[str] = ()) -> None:
    """
    Set the logging level on the root logger and on the named loggers.

    Args:
        level: Logging level (e.g., logging.DEBUG, logging.INFO)
        logger_names: Additional loggers whose handlers follow the level
    """
    logging.getLogger().setLevel(level)

    for logger_name in logger_names:
        logger = logging.getLogger(logger_name)
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)


def configure_debug_logging(logger: logging.Logger) -> None:
    """Switch a logger to debug level with line numbers in its output."""
    set_global_log_level(logging.DEBUG, [logger.name])

    debug_format = '%(asctime)s - %(name)s:%(lineno)d - %(levelname)s - %(message)s'
    for handler in logger.handlers:
        if not isinstance(handler, RichHandler):
            handler.setFormatter(logging.Formatter(debug_format))


def silence_external_loggers() -> None:
    """Silence noisy external library loggers."""
    for name in EXTERNAL_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
