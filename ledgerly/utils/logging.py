"""
Logging utilities for the Ledgerly backend.

Logging rules:
- NEVER log Supabase Auth tokens, API keys, or secrets
- NEVER log transaction amounts, titles, or descriptions
- Ids, dates, counts and scopes are fine
"""

import logging
from typing import Optional

from ledgerly.config import settings


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Get a configured logger for the specified module.

    Args:
        name: Module name (typically __name__)
        level: Optional logging level (defaults to settings.LOG_LEVEL)

    Returns:
        Configured logger instance

    Usage:
        >>> from ledgerly.utils.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Materialized 3 occurrences")
    """
    logger = logging.getLogger(name)

    if level is None:
        level = logging.getLevelName(settings.LOG_LEVEL.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger.setLevel(level)

    # Attach a handler only when neither this logger nor the root has one
    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
