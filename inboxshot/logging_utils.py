"""Logging setup shared by the command-line entry points."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str | int = logging.INFO) -> logging.Logger:
    """Configure the root logger and return the application logger."""
    resolved = _coerce_level(level)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    logger = logging.getLogger("inboxshot")
    logger.setLevel(resolved)
    return logger


def _coerce_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        value = getattr(logging, level.strip().upper(), None)
        if isinstance(value, int):
            return value
    return logging.INFO
