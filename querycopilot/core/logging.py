"""
Logging for the query pipeline.

Every module grabs its logger through ``get_logger(__name__)``; the level
comes from ``Settings.log_level``.
"""
from __future__ import annotations

import logging
import sys

from querycopilot.core.config import get_settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
        logger.propagate = False
    level = get_settings().log_level.upper()
    logger.setLevel(getattr(logging, level, logging.INFO))
    return logger
