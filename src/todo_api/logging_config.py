from __future__ import annotations

import sys

from loguru import logger

_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | {name}:{line} - {message}"


# PUBLIC_INTERFACE
def configure_logging(level: str = "INFO") -> None:
    """
    Replace loguru's default sink with a single stderr sink at `level`.

    Unknown level names fall back to INFO rather than failing app startup.
    """
    try:
        logger.level(level)
    except ValueError:
        level = "INFO"
    logger.remove()
    logger.add(sys.stderr, level=level, format=_FORMAT, backtrace=False, diagnose=False)
