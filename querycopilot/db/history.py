"""
Execution history -- an audit trail of every proposal execution attempt.

The table is created on first use via ``ensure_history_table()``.  Writes are
fire-and-forget: a failing history store never fails an execution.
"""
from __future__ import annotations

import json
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    select,
)
from sqlalchemy.engine import Engine

from querycopilot.copilot.models import ExecutionProposal, ExecutionResult
from querycopilot.db.connection import get_engine
from querycopilot.core.logging import get_logger

logger = get_logger(__name__)

_metadata = MetaData()

execution_history = Table(
    "execution_history",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("artifact_id", String(120)),
    Column("title", String(255)),
    Column("database_name", String(120), nullable=False),
    Column("query", Text, nullable=False),
    Column("success", Boolean, nullable=False),
    Column("error_kind", String(30)),
    Column("error", Text),
    Column("row_count", Integer, nullable=False, default=0),
    Column("malformed_lines", Integer, nullable=False, default=0),
    Column("execution_time_ms", Integer, nullable=False, default=0),
    Column("interpolated_variables", Text),  # JSON object
    Column("created_at", DateTime(timezone=True), nullable=False),
)


def ensure_history_table(engine: Engine | None = None) -> None:
    """Create the history table if it doesn't exist."""
    engine = engine or get_engine()
    _metadata.create_all(engine, tables=[execution_history])
    logger.info("History table '%s' ensured", execution_history.name)


def log_execution(
    proposal: ExecutionProposal,
    result: ExecutionResult,
    engine: Engine | None = None,
) -> None:
    """Insert one row for *result*.  Errors are logged, never raised."""
    engine = engine or get_engine()
    params = {
        "artifact_id": proposal.artifact_id,
        "title": proposal.title,
        "database_name": result.database,
        "query": result.query or proposal.query,
        "success": result.success,
        "error_kind": result.error_kind,
        "error": result.error,
        "row_count": result.row_count,
        "malformed_lines": result.malformed_lines,
        "execution_time_ms": result.execution_time_ms,
        "interpolated_variables": json.dumps(result.interpolated_variables) if result.interpolated_variables else None,
        "created_at": result.timestamp,
    }
    try:
        with engine.begin() as conn:
            conn.execute(execution_history.insert(), params)
        logger.debug("Execution logged: db=%s success=%s", result.database, result.success)
    except Exception:
        logger.exception("Failed to log execution -- continuing without logging")


def fetch_recent(limit: int = 50, engine: Engine | None = None) -> list[dict[str, Any]]:
    """Most recent executions first."""
    engine = engine or get_engine()
    stmt = (
        select(execution_history)
        .order_by(execution_history.c.id.desc())
        .limit(limit)
    )
    with engine.connect() as conn:
        rows = conn.execute(stmt).mappings().all()

    history = []
    for row in rows:
        item = dict(row)
        raw_vars = item.get("interpolated_variables")
        item["interpolated_variables"] = json.loads(raw_vars) if raw_vars else {}
        created = item.get("created_at")
        if created is not None:
            item["created_at"] = created.isoformat()
        history.append(item)
    return history
