"""
Shared logger utility for entry points (demos, scripts).
Library modules use ``logging.getLogger(__name__)`` and leave configuration to these helpers.
"""

import logging
import os

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _level(default: int) -> int:
    name = os.getenv("STOCK_ALERT_LOG_LEVEL")
    level = logging.getLevelName(name.upper()) if name else default
    return level if isinstance(level, int) else default


def get_logger(name: str | None = None, level: int = logging.INFO) -> logging.Logger:
    """
    Return a logger with the shared format. The root logger gets the handler so that
    every module logger in the engine is shown too.
    ``STOCK_ALERT_LOG_LEVEL`` in the environment overrides ``level``.
    """
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(handler)
    resolved = _level(level)
    root.setLevel(resolved)
    logger = logging.getLogger(name)
    logger.setLevel(resolved)
    return logger
