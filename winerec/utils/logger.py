"""Logging helpers for the wine recommendation engine.

Every module obtains its logger through get_logger so that output shares
one stdout handler format. The default level can be raised or lowered for
the whole package with the WINEREC_LOG_LEVEL environment variable.
"""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _default_level() -> int:
    """Read the package log level from the environment, falling back to INFO."""
    name = os.environ.get("WINEREC_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """Create or retrieve a named logger with standard formatting.

    Args:
        name: The logger name, typically __name__ of the calling module.
        level: The logging level. Defaults to WINEREC_LOG_LEVEL or INFO.

    Returns:
        A configured Logger instance.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(level if level is not None else _default_level())
    return logger
