"""
Logging setup for the lab client.

Library modules only call logging.getLogger(__name__); nothing is configured
on import. Applications call init_logger() once to get console output.
"""

import logging
from typing import Optional

from src.config.settings import get_settings

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def init_logger(level: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger with a console handler.

    Safe to call more than once: the handler is only attached on the first
    call, later calls just update the level.

    Args:
        level: Level name ("DEBUG", "INFO", ...). Defaults to
               get_settings().log_level (HAAS_LOG_LEVEL, or "INFO").

    Returns:
        The root logger.

    Raises:
        ValueError: If the level name is unknown.
    """
    global _configured

    level_name = (level or get_settings().log_level).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level_name}")

    root = logging.getLogger()
    root.setLevel(numeric_level)

    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))
        root.addHandler(handler)
        _configured = True

    return root
