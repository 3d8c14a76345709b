"""SQLAlchemy engine for the execution-history store.

Single shared engine, created lazily from ``Settings.history_database_url``
(SQLite by default, any SQLAlchemy URL works).
"""
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from querycopilot.core.config import get_settings
from querycopilot.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        url = get_settings().history_database_url
        kwargs: dict = {"pool_pre_ping": True, "echo": False}
        if not url.startswith("sqlite"):
            kwargs.update(pool_size=5, max_overflow=10)
        _engine = create_engine(url, **kwargs)
        logger.info("History DB engine created  backend=%s", _engine.url.get_backend_name())
    return _engine
