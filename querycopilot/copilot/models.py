"""
Proposal / result / feedback models exchanged with the chat layer.

All of them dump to plain JSON (``model_dump(mode="json")``) for the debug
and export views.
"""
from __future__ import annotations

import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ErrorKind = Literal[
    "macro",
    "timeout",
    "cancelled",
    "transport",
    "invalid_proposal",
    "mutation_blocked",
    "internal",
]


class ExecutionProposal(BaseModel):
    """An AI-generated query and chart definition awaiting execution."""

    query: str = Field(..., description="Raw SQL, may contain $__ macros")
    database: str | None = Field(None, description="Logical database name; the session database when omitted")
    chart_type: str | None = Field(None, description="timeseries | bar | line | table ...")
    x_axis: str | None = None
    y_axes: list[str] = Field(default_factory=list)
    artifact_id: str | None = None
    title: str | None = None


class ExecutionResult(BaseModel):
    """Outcome of one execution attempt.  Immutable once created."""

    model_config = ConfigDict(frozen=True)

    success: bool
    data: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    execution_time_ms: int = 0
    error: str | None = None
    error_kind: ErrorKind | None = None
    error_detail: str | None = None
    timestamp: datetime.datetime
    query: str = ""
    database: str = ""
    columns: list[str] = Field(default_factory=list)
    malformed_lines: int = 0
    interpolated_variables: dict[str, str] = Field(default_factory=dict)


class Feedback(BaseModel):
    """Result-derived summary for the chat layer.  Recomputable, never mutated."""

    model_config = ConfigDict(frozen=True)

    summary: str
    insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    follow_up_questions: list[str] = Field(default_factory=list)
    confidence_score: float = 0.0
    data_quality_score: float = 0.0


class SmartSuggestion(BaseModel):
    type: Literal["optimization", "follow_up"]
    title: str
    description: str
    query_modification: str | None = None
    confidence: float
    estimated_improvement: str
