"""Structured logging configuration for the pack value engine."""

from __future__ import annotations

import logging
import sys


def setup_logging(
    level: int = logging.INFO,
    module_name: str = "pack_engine",
) -> logging.Logger:
    """Configure and return a logger with consistent formatting.

    Handlers are attached once; later calls return the same logger.

    Args:
        level: Logging level (default INFO).
        module_name: Name for the logger instance. Use "src" to cover
            every module logger in the package tree.

    Returns:
        Configured logger.
    """
    logger = logging.getLogger(module_name)

    if logger.handlers:
        return logger

    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger
