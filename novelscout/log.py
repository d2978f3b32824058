"""Logging setup.

All modules log through loguru's shared ``logger``; this module only swaps
the default sink for one that honours ``LOG_LEVEL``.
"""

from __future__ import annotations

import sys
from typing import Optional

from loguru import logger

from . import config

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level:<7}</level> | "
    "<cyan>{name}</cyan> | {message}"
)


def setup_logging(level: Optional[str] = None) -> None:
    """Route loguru output to stderr at ``level`` (defaults to ``LOG_LEVEL``)."""
    logger.remove()
    logger.add(sys.stderr, level=level or config.LOG_LEVEL, format=LOG_FORMAT)
