"""
Shared request models and FastAPI dependencies.

Tests swap the executor or the history sink through
``app.dependency_overrides``.
"""
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends
from pydantic import BaseModel, Field

from querycopilot.copilot.engine import AutoExecutionEngine, HistorySink
from querycopilot.core.config import get_settings
from querycopilot.core.logging import get_logger
from querycopilot.db.history import ensure_history_table, log_execution
from querycopilot.execution.executor import QueryExecutor
from querycopilot.templating.macros import MacroContext
from querycopilot.templating.presets import preset_range
from querycopilot.templating.time_range import time_range_from_strings
from querycopilot.templating.time_units import TimeColumn

logger = get_logger(__name__)


# ── Request models ───────────────────────────────────────


class TimeRangeIn(BaseModel):
    start: str = Field("now-1h", description="now, now-<n><unit>, <n><unit> or ISO-8601")
    end: str = Field("now", description="now, now-<n><unit>, now+<n><unit> or ISO-8601")


class TimeColumnIn(BaseModel):
    name: str = Field(..., min_length=1)
    data_type: str | None = None
    time_unit: str = Field("auto", description="s | ms | us | ns | native | auto")
    samples: list[float] | None = Field(None, description="Raw column values that help infer an auto unit")


class ContextIn(BaseModel):
    """Time settings shared by every query endpoint."""

    time_range: TimeRangeIn | None = None
    preset: str | None = Field(None, description="Quick-range key or display name; overrides time_range")
    time_column: TimeColumnIn | None = None
    time_zone: str | None = None
    max_data_points: int | None = Field(None, gt=0)
    interval_style: str | None = Field(None, description="suffixed | sql | seconds")


def build_context(database: str, ctx: ContextIn) -> MacroContext:
    """Request fields on top of the configured defaults.

    Raises ``InvalidConfiguration`` for an unknown preset or time unit.
    """
    settings = get_settings()

    time_range = None
    if ctx.preset:
        time_range = preset_range(ctx.preset).time_range
    elif ctx.time_range is not None:
        time_range = time_range_from_strings(ctx.time_range.start, ctx.time_range.end)

    time_column = None
    if ctx.time_column is not None:
        time_column = TimeColumn(
            name=ctx.time_column.name,
            data_type=ctx.time_column.data_type,
            time_unit=ctx.time_column.time_unit,
            samples=tuple(ctx.time_column.samples or ()),
        )

    return MacroContext(
        database=database,
        time_range=time_range,
        time_column=time_column,
        time_zone=ctx.time_zone or settings.default_time_zone,
        max_data_points=ctx.max_data_points or settings.max_data_points,
        fallback_time_column=settings.default_time_column or None,
        interval_style=ctx.interval_style or settings.interval_style,
    )


# ── Dependencies ─────────────────────────────────────────


@lru_cache
def _default_executor() -> QueryExecutor:
    return QueryExecutor.from_settings()


def get_executor() -> QueryExecutor:
    return _default_executor()


@lru_cache
def _history_ready() -> bool:
    try:
        ensure_history_table()
        return True
    except Exception:
        logger.warning("Could not ensure execution history table (DB may not be available)")
        return False


def get_history_sink() -> HistorySink | None:
    if not get_settings().history_enabled or not _history_ready():
        return None
    return log_execution


def get_engine(
    executor: QueryExecutor = Depends(get_executor),
    history: HistorySink | None = Depends(get_history_sink),
) -> AutoExecutionEngine:
    return AutoExecutionEngine.from_settings(executor, history=history)
