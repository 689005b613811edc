"""
Logging utilities for the agent loop engine.

All modules log under the ``agent_loop_engine`` logger hierarchy so an
application can tune the loop's verbosity independently of its own logs.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

_ROOT_NAME = "agent_loop_engine"

# Package root logger
_root_logger = logging.getLogger(_ROOT_NAME)


def _coerce_level(level: str | int) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level


def setup_logging(
    level: str | int = "INFO",
    format: str | None = None,
    stream: TextIO | None = None,
    file: str | None = None,
) -> None:
    """
    Configure logging for the agent loop engine.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL) or int
        format: Custom log format string
        stream: Output stream (defaults to stderr)
        file: Optional file path to write logs

    Example:
        from agent_loop_engine.logging import setup_logging

        # Trace every turn transition
        setup_logging("DEBUG")

        # Keep a run log on disk
        setup_logging("INFO", file="agent-loop.log")
    """
    level = _coerce_level(level)
    _root_logger.setLevel(level)
    _root_logger.handlers.clear()

    if format is None:
        format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    formatter = logging.Formatter(format)

    stream_handler = logging.StreamHandler(stream or sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(level)
    _root_logger.addHandler(stream_handler)

    if file:
        file_handler = logging.FileHandler(file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        _root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger for a submodule.

    Args:
        name: Submodule name (e.g., "loop", "dispatcher")

    Returns:
        Logger instance
    """
    if name == _ROOT_NAME or name.startswith(f"{_ROOT_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_NAME}.{name}")


def set_level(level: str | int) -> None:
    """Set the log level for the agent loop engine."""
    _root_logger.setLevel(_coerce_level(level))

