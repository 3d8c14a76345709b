"""
Unit tests -- result feedback: derived purely from result shape, no network.
"""
import datetime

import pytest

from querycopilot.copilot.feedback import ResultFeedbackManager
from querycopilot.copilot.models import ExecutionProposal, ExecutionResult

TS = datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture(scope="module")
def manager():
    return ResultFeedbackManager()


def _ok(data, **kwargs):
    columns = kwargs.pop("columns", None)
    if columns is None:
        columns = list(dict.fromkeys(k for row in data for k in row))
    kwargs.setdefault("execution_time_ms", 5)
    kwargs.setdefault("query", "SELECT time, value FROM cpu WHERE x ORDER BY time")
    return ExecutionResult(
        success=True,
        data=data,
        row_count=kwargs.pop("row_count", len(data)),
        columns=columns,
        timestamp=TS,
        database="metrics",
        **kwargs,
    )


def _failed(kind, error="boom", detail=None):
    return ExecutionResult(
        success=False,
        error=error,
        error_kind=kind,
        error_detail=detail,
        timestamp=TS,
        query="SELECT 1",
        database="metrics",
    )


def _series(*values):
    return [{"time": f"2024-01-01T00:0{i}:00Z", "value": v} for i, v in enumerate(values)]


# ── no data ─────────────────────────────────────────────


def test_zero_rows_always_reports_no_data(manager):
    feedback = manager.generate_feedback(_ok([]))
    assert "No data returned for the selected time range and filters." in feedback.insights
    assert "No data returned" in feedback.summary
    assert feedback.follow_up_questions[0].startswith("Would you like to try a different time range")


def test_zero_rows_with_proposal_does_not_flag_axes(manager):
    proposal = ExecutionProposal(query="SELECT 1", x_axis="time", y_axes=["value"])
    feedback = manager.generate_feedback(_ok([]), proposal)
    assert not any("Chart field" in r for r in feedback.recommendations)


# ── trends ──────────────────────────────────────────────


def test_upward_trend_on_charted_column(manager):
    proposal = ExecutionProposal(query="SELECT 1", x_axis="time", y_axes=["value"])
    feedback = manager.generate_feedback(_ok(_series(10, 15, 20)), proposal)
    trend = [i for i in feedback.insights if i.startswith("'value'")]
    assert len(trend) == 1
    assert "trends upward" in trend[0]
    assert "+100.0%" in trend[0]


def test_downward_trend_without_proposal(manager):
    feedback = manager.generate_feedback(_ok(_series(50, 40, 25)))
    assert any("'value' trends downward" in i for i in feedback.insights)


def test_flat_trend(manager):
    feedback = manager.generate_feedback(_ok(_series(100, 100.5)))
    assert any("'value' stays roughly flat" in i for i in feedback.insights)


def test_no_trend_for_text_columns(manager):
    feedback = manager.generate_feedback(_ok([{"host": "a"}, {"host": "b"}]))
    assert not any("trends" in i or "flat" in i for i in feedback.insights)


# ── shape checks ────────────────────────────────────────


def test_sparse_column_reported(manager):
    data = [{"a": 1, "b": 1}, {"a": 2}, {"a": 3}]
    feedback = manager.generate_feedback(_ok(data))
    assert "Column 'b' is 67% empty (null or missing)." in feedback.insights


def test_missing_chart_field_recommendation(manager):
    proposal = ExecutionProposal(query="SELECT 1", x_axis="time", y_axes=["cpu"])
    feedback = manager.generate_feedback(_ok(_series(1, 2)), proposal)
    recs = [r for r in feedback.recommendations if r.startswith("Chart field(s)")]
    assert len(recs) == 1
    assert "cpu" in recs[0]
    assert "time, value" in recs[0]


def test_large_result_set(manager):
    feedback = manager.generate_feedback(_ok([], columns=["value"], row_count=20_000))
    assert any(i.startswith("Large result set (20000 rows)") for i in feedback.insights)


def test_moderate_result_set(manager):
    feedback = manager.generate_feedback(_ok([], columns=["value"], row_count=2_000))
    assert any(i.startswith("Moderate result set") for i in feedback.insights)


def test_slow_query(manager):
    feedback = manager.generate_feedback(_ok(_series(1, 2), execution_time_ms=15_000))
    assert any("relatively slow" in i for i in feedback.insights)


def test_malformed_lines_lower_quality(manager):
    clean = manager.generate_feedback(_ok(_series(1, 2)))
    dirty = manager.generate_feedback(_ok(_series(1, 2), malformed_lines=3))
    assert dirty.data_quality_score < clean.data_quality_score
    assert any("could not be parsed" in i for i in dirty.insights)


def test_nested_values_never_raise(manager):
    data = [{"a": [1, 2], "b": {"x": 1}}, {"a": None, "b": "text"}]
    feedback = manager.generate_feedback(_ok(data))
    assert feedback.summary.startswith("Query executed successfully")


def test_scores(manager):
    feedback = manager.generate_feedback(_ok(_series(1, 2)))
    assert feedback.confidence_score == 1.0
    assert feedback.data_quality_score == 0.9


def test_feedback_is_deterministic(manager):
    result = _ok(_series(3, 1, 4, 1, 5))
    assert manager.generate_feedback(result) == manager.generate_feedback(result)


# ── failures ────────────────────────────────────────────


def test_timeout_failure(manager):
    feedback = manager.generate_feedback(_failed("timeout", "Query timed out after 30s."))
    assert feedback.summary.startswith("Query execution failed")
    assert any(i.startswith("Query execution timed out") for i in feedback.insights)
    assert feedback.confidence_score == 0.1
    assert feedback.data_quality_score == 0.0


def test_macro_failure_recommends_time_range(manager):
    feedback = manager.generate_feedback(_failed("macro", detail="no time range is selected"))
    assert "Configure a time range in the query interface to use time filtering." in feedback.recommendations


def test_missing_table_failure(manager):
    feedback = manager.generate_feedback(
        _failed("transport", detail='relation "cpu" table does not exist')
    )
    assert any("table does not exist" in i for i in feedback.insights)


# ── formatting ──────────────────────────────────────────


def test_format_for_ai(manager):
    feedback = manager.generate_feedback(_ok(_series(1, 2)))
    text = manager.format_feedback_for_ai(feedback)
    assert text.startswith("EXECUTION RESULT FEEDBACK:")
    assert "SUMMARY: Query executed successfully" in text
    assert "\n• " in text
    assert "CONFIDENCE SCORE: 100%" in text
    assert "DATA QUALITY SCORE: 90%" in text


def test_feedback_dumps_to_json(manager):
    feedback = manager.generate_feedback(_failed("cancelled"))
    dumped = feedback.model_dump(mode="json")
    assert set(dumped) >= {"summary", "insights", "recommendations", "follow_up_questions"}
