"""
Logging setup for the signage player.
Every module calls setup_logger(__name__) once at import time.
"""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Root of our logger hierarchy; handlers are only attached here
ROOT_LOGGER_NAME = "signage"

_configured = False


def _resolve_level(level: Optional[str]) -> int:
    """Translate a level name (or None) into a logging level."""
    name = level or os.environ.get("SIGNAGE_LOG_LEVEL", "INFO")
    resolved = logging.getLevelName(str(name).upper())
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def configure_logging(level: Optional[str] = None) -> None:
    """
    Attach a single stream handler to the signage logger hierarchy.

    Safe to call more than once; later calls only change the level.

    Args:
        level: Level name (e.g. 'DEBUG'). Falls back to SIGNAGE_LOG_LEVEL, then INFO.
    """
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(_resolve_level(level))

    if not _configured:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.propagate = False
        _configured = True


def setup_logger(name: str) -> logging.Logger:
    """
    Get a logger that lives under the 'signage' hierarchy.

    Args:
        name: Usually the calling module's __name__

    Returns:
        Configured logger
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    if not _configured:
        configure_logging()

    return logging.getLogger(name)
