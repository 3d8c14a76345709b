"""
Result feedback -- turns an ``ExecutionResult`` into a ``Feedback`` the
chat layer can hand back to the model.

Everything is derived from the shape and statistics of the result (no LLM
call), so the same result always produces the same feedback:

  1. Row-count thresholds (0 -> "No data returned", >1,000 moderate, >10,000 large)
  2. Execution-time thresholds
  3. Time-like and aggregate column names
  4. Numeric trend of the charted y-axis (or the first numeric column)
  5. Null density per column
  6. Chart-axis mapping (requested fields missing from the result)
  7. Error-specific hints for failed executions
"""
from __future__ import annotations

import pandas as pd

from querycopilot.copilot.models import ExecutionProposal, ExecutionResult, Feedback
from querycopilot.core.logging import get_logger

logger = get_logger(__name__)

LARGE_RESULT_ROWS = 10_000
MODERATE_RESULT_ROWS = 1_000
SLOW_QUERY_MS = 10_000
FAST_QUERY_MS = 100
SPARSE_COLUMN_RATIO = 0.2
FLAT_TREND_PCT = 1.0

_TIME_HINTS = ("time", "date")
_AGGREGATE_HINTS = ("avg", "sum", "count", "min", "max")


def _is_time_like(column: str) -> bool:
    lowered = column.lower()
    return any(hint in lowered for hint in _TIME_HINTS)


def _is_aggregate(column: str) -> bool:
    lowered = column.lower()
    return any(hint in lowered for hint in _AGGREGATE_HINTS)


def _fmt(value: float) -> str:
    return f"{value:,.4g}" if abs(value) < 1e15 else f"{value:.3e}"


# ── Statistics (pandas) ──────────────────────────────────


def _numeric(series: pd.Series) -> pd.Series | None:
    """The series as numbers, or None when it is not a numeric column."""
    if pd.api.types.is_bool_dtype(series):
        return None
    present = series.notna().sum()
    if present == 0:
        return None
    try:
        converted = pd.to_numeric(series, errors="coerce")
    except (TypeError, ValueError):
        return None
    if converted.notna().sum() != present:
        return None
    return converted.astype(float)


def _trend_column(df: pd.DataFrame, proposal: ExecutionProposal | None) -> tuple[str, pd.Series] | None:
    candidates: list[str] = []
    if proposal is not None:
        candidates.extend(y for y in proposal.y_axes if y in df.columns)
    x_axis = proposal.x_axis if proposal is not None else None
    candidates.extend(
        c for c in df.columns
        if c not in candidates and c != x_axis and not _is_time_like(c)
    )
    for column in candidates:
        values = _numeric(df[column])
        if values is not None and values.notna().sum() >= 2:
            return column, values.dropna()
    return None


def _trend_insight(column: str, values: pd.Series) -> str:
    first, last = float(values.iloc[0]), float(values.iloc[-1])
    if first != 0:
        pct = (last - first) / abs(first) * 100
        change = f"{pct:+.1f}%"
    else:
        pct = 0.0 if last == 0 else (100.0 if last > 0 else -100.0)
        change = f"{last - first:+g}"

    if abs(pct) < FLAT_TREND_PCT:
        direction = "stays roughly flat"
    elif pct > 0:
        direction = "trends upward"
    else:
        direction = "trends downward"

    return (
        f"'{column}' {direction} across the result ({_fmt(first)} -> {_fmt(last)}, {change}); "
        f"range {_fmt(float(values.min()))} to {_fmt(float(values.max()))}, "
        f"mean {_fmt(float(values.mean()))}."
    )


def _sparse_columns(df: pd.DataFrame) -> dict[str, float]:
    ratios = df.isna().mean()
    return {str(c): float(r) for c, r in ratios.items() if r > SPARSE_COLUMN_RATIO}


# ── Manager ──────────────────────────────────────────────


class ResultFeedbackManager:
    """Deterministic, side-effect free feedback generation."""

    def generate_feedback(
        self,
        result: ExecutionResult,
        proposal: ExecutionProposal | None = None,
    ) -> Feedback:
        df = pd.DataFrame(result.data) if result.success and result.data else pd.DataFrame()
        columns = list(result.columns) or [str(c) for c in df.columns]

        feedback = Feedback(
            summary=self._summary(result, proposal, columns),
            insights=self._insights(result, proposal, df, columns),
            recommendations=self._recommendations(result, proposal, columns),
            follow_up_questions=self._follow_ups(result, columns),
            confidence_score=self._confidence(result, columns),
            data_quality_score=self._data_quality(result, df, columns),
        )
        logger.debug(
            "Feedback generated | success=%s | insights=%d | recommendations=%d",
            result.success, len(feedback.insights), len(feedback.recommendations),
        )
        return feedback

    # ── Summary ─────────────────────────────────────────

    def _summary(self, result: ExecutionResult, proposal: ExecutionProposal | None, columns: list[str]) -> str:
        if not result.success:
            query = proposal.query if proposal is not None else result.query
            return (
                f'Query execution failed: {result.error}. The query "{query}" could not be '
                f'executed against database "{result.database}".'
            )

        summary = f"Query executed successfully in {result.execution_time_ms}ms. "
        if result.row_count == 0:
            return summary + (
                "No data returned, which could indicate: (1) no matching records for the "
                "specified criteria, (2) a time range that is too narrow, or (3) an empty table."
            )

        plural_rows = "row" if result.row_count == 1 else "rows"
        plural_cols = "column" if len(columns) == 1 else "columns"
        summary += f"Returned {result.row_count} {plural_rows} with {len(columns)} {plural_cols}"
        if columns:
            summary += f": {', '.join(columns)}"
        if result.malformed_lines:
            summary += f". {result.malformed_lines} malformed line(s) were skipped"
        return summary

    # ── Insights ────────────────────────────────────────

    def _error_text(self, result: ExecutionResult) -> str:
        return f"{result.error or ''} {result.error_detail or ''}".lower()

    def _failure_insights(self, result: ExecutionResult) -> list[str]:
        insights: list[str] = []
        text = self._error_text(result)
        kind = result.error_kind

        if "table" in text and "does not exist" in text:
            insights.append(
                "The specified table does not exist in the database. "
                "Check table name spelling or database selection."
            )
        if "column" in text and "does not exist" in text:
            insights.append(
                "One or more columns in the query do not exist. "
                "Verify column names against the table schema."
            )
        if kind == "timeout" or "timeout" in text:
            insights.append(
                "Query execution timed out. Consider adding more specific WHERE clauses or LIMIT statements."
            )
        if kind == "macro":
            insights.append(
                "Query contains time variables that need a configured time range and time field."
            )
        if kind == "transport":
            insights.append(
                "The query service failed or could not be reached; the query itself may be correct."
            )
        if kind == "cancelled":
            insights.append("Execution was cancelled before results arrived.")
        if kind == "mutation_blocked":
            insights.append("The query modifies data and was not run without explicit confirmation.")
        if kind == "invalid_proposal":
            insights.append("The proposal did not include a query to execute.")
        return insights

    def _insights(
        self,
        result: ExecutionResult,
        proposal: ExecutionProposal | None,
        df: pd.DataFrame,
        columns: list[str],
    ) -> list[str]:
        if not result.success:
            return self._failure_insights(result)

        insights: list[str] = []
        rows = result.row_count
        elapsed = result.execution_time_ms

        if rows == 0:
            insights.append("No data returned for the selected time range and filters.")

        if elapsed > SLOW_QUERY_MS:
            insights.append(
                f"Query took {elapsed}ms to execute, which is relatively slow. "
                "Consider optimizing with indexes or more specific filters."
            )
        elif elapsed < FAST_QUERY_MS:
            insights.append(f"Query executed very quickly ({elapsed}ms), indicating good performance.")

        if rows > LARGE_RESULT_ROWS:
            insights.append(
                f"Large result set ({rows} rows) returned. "
                "Consider adding pagination or more specific filters for better performance."
            )
        elif rows > MODERATE_RESULT_ROWS:
            insights.append(
                f"Moderate result set ({rows} rows) returned. "
                "Data is substantial enough for meaningful analysis."
            )

        if len(columns) > 20:
            insights.append(
                f"Query returns many columns ({len(columns)}). "
                "Consider selecting only the columns needed for analysis."
            )
        if any(_is_time_like(c) for c in columns):
            insights.append(
                "Results include time-based columns, making this suitable for time series analysis "
                "and trend detection."
            )
        if any(_is_aggregate(c) for c in columns):
            insights.append(
                "Results include aggregated metrics, which are useful for summary statistics and KPI analysis."
            )
        if result.malformed_lines:
            insights.append(
                f"{result.malformed_lines} line(s) of the response could not be parsed and were skipped."
            )

        if not df.empty:
            trend = _trend_column(df, proposal)
            if trend is not None:
                insights.append(_trend_insight(*trend))
            for column, ratio in _sparse_columns(df).items():
                insights.append(f"Column '{column}' is {ratio:.0%} empty (null or missing).")

        return insights

    # ── Recommendations ─────────────────────────────────

    def _recommendations(
        self,
        result: ExecutionResult,
        proposal: ExecutionProposal | None,
        columns: list[str],
    ) -> list[str]:
        recs: list[str] = []

        if not result.success:
            text = self._error_text(result)
            if "table" in text and "does not exist" in text:
                recs.append("Query a different table or check available tables in the database schema.")
                recs.append("Verify that you're connected to the correct database.")
            if result.error_kind == "macro" or "$__timefilter" in text:
                recs.append("Configure a time range in the query interface to use time filtering.")
                recs.append("Select a time field for the query to work properly.")
            if result.error_kind == "timeout":
                recs.append("Narrow the time range or add a LIMIT clause, then retry.")
            if result.error_kind == "transport":
                recs.append("Check the query service connection and retry.")
            if result.error_kind == "mutation_blocked":
                recs.append("Confirm the statement explicitly or rewrite it as a SELECT query.")
            return recs

        rows = result.row_count
        query = (result.query or "").upper()

        if result.execution_time_ms > 5000:
            recs.append("Add WHERE clauses to filter data and improve query performance.")
            recs.append("Consider using LIMIT to restrict the number of returned rows.")

        if rows == 0:
            recs.append("Expand the time range or modify filter criteria to capture more data.")
            recs.append("Check if the table contains data for the specified time period.")

        if "WHERE" not in query and "LIMIT" not in query:
            recs.append("Add WHERE conditions to filter results and improve performance.")
        if "ORDER BY" not in query and rows > 1:
            recs.append("Consider adding ORDER BY to sort results meaningfully.")

        if rows > 100:
            recs.append("This dataset is suitable for creating visualizations and charts.")
            recs.append("Consider grouping or aggregating data for trend analysis.")

        if proposal is not None and rows > 0:
            requested = [f for f in [proposal.x_axis, *proposal.y_axes] if f]
            missing = [f for f in requested if f not in columns]
            if missing:
                recs.append(
                    f"Chart field(s) {', '.join(missing)} are not in the results; revisit the field "
                    f"mapping (available columns: {', '.join(columns)})."
                )
            if proposal.chart_type in ("timeseries", "line") and not any(_is_time_like(c) for c in columns):
                recs.append("A time series chart was requested but no time column was returned.")

        return recs

    # ── Follow-ups ──────────────────────────────────────

    def _follow_ups(self, result: ExecutionResult, columns: list[str]) -> list[str]:
        if not result.success:
            return [
                "Would you like me to suggest an alternative query approach?",
                "Should I help you identify the correct table or column names?",
            ]

        rows = result.row_count
        if rows == 0:
            return [
                "Would you like to try a different time range or filter criteria?",
                "Should I check what data is available in this table?",
            ]

        questions = [
            "Would you like me to create a visualization of this data?",
            "Should I analyze trends or patterns in the results?",
        ]
        if any(_is_time_like(c) for c in columns):
            questions.append("Would you like to see this data as a time series chart?")
        if len(columns) > 5:
            questions.append("Should I focus on specific columns for deeper analysis?")
        if rows > 100:
            questions.append("Would you like me to summarize key statistics from this data?")
        return questions

    # ── Scores ──────────────────────────────────────────

    def _confidence(self, result: ExecutionResult, columns: list[str]) -> float:
        if not result.success:
            return 0.1

        score = 0.5
        if result.execution_time_ms < 1000:
            score += 0.2
        elif result.execution_time_ms > SLOW_QUERY_MS:
            score -= 0.1

        if 0 < result.row_count < 100_000:
            score += 0.2
        elif result.row_count == 0:
            score -= 0.1

        if columns:
            score += 0.1
        return round(max(0.0, min(1.0, score)), 2)

    def _data_quality(self, result: ExecutionResult, df: pd.DataFrame, columns: list[str]) -> float:
        if not result.success:
            return 0.0

        score = 0.5
        if result.row_count > 0:
            score += 0.3
        if len(columns) > 3:
            score += 0.1
        if any(_is_time_like(c) for c in columns):
            score += 0.1
        if result.malformed_lines:
            score -= 0.1
        if not df.empty and _sparse_columns(df):
            score -= 0.1
        return round(max(0.0, min(1.0, score)), 2)

    # ── AI formatting ───────────────────────────────────

    def format_feedback_for_ai(self, feedback: Feedback) -> str:
        """Plain-text block handed back to the chat model."""
        parts = ["EXECUTION RESULT FEEDBACK:", "", f"SUMMARY: {feedback.summary}", ""]

        sections: list[tuple[str, list[str]]] = [
            ("INSIGHTS", feedback.insights),
            ("RECOMMENDATIONS", feedback.recommendations),
            ("SUGGESTED FOLLOW-UP QUESTIONS", feedback.follow_up_questions),
        ]
        for title, items in sections:
            if items:
                parts.append(f"{title}:")
                parts.extend(f"• {item}" for item in items)
                parts.append("")

        parts.append(f"CONFIDENCE SCORE: {round(feedback.confidence_score * 100)}%")
        parts.append(f"DATA QUALITY SCORE: {round(feedback.data_quality_score * 100)}%")
        return "\n".join(parts) + "\n"