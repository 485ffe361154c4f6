"""Console output and logging configuration.

Provides Rich-based console output and logging setup:
    - console: Rich console for stdout (results, panels)
    - stderr_console: Rich console for diagnostics and log records
    - setup_logging(): route the ``pairbox`` logger through a Rich handler
    - get_logger(): named logger under the ``pairbox`` namespace
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

console = Console()
stderr_console = Console(stderr=True)

APP_LOGGER = "pairbox"


def _normalize_level(level: str | int) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return int(level)


def setup_logging(level: str | int = logging.INFO, verbose: bool = False) -> logging.Logger:
    """Configure logging with a Rich handler and return the app logger."""
    numeric_level = logging.DEBUG if verbose else _normalize_level(level)

    handler = RichHandler(
        console=stderr_console,
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(numeric_level)

    logger = logging.getLogger(APP_LOGGER)
    logger.handlers.clear()
    logger.setLevel(numeric_level)
    logger.addHandler(handler)

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or APP_LOGGER)


__all__ = ["APP_LOGGER", "console", "get_logger", "setup_logging", "stderr_console"]
