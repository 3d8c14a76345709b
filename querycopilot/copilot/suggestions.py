"""
Smart execution suggestions.

Cheap, rule-based hints shown next to a proposal:
  - add ``$__timeFilter`` when the query has neither a time filter nor a WHERE clause
  - add ``LIMIT`` when the query has none
  - suggest a trend analysis after a successful, non-empty previous run
"""
from __future__ import annotations

import re
from typing import Sequence

from querycopilot.copilot.models import ExecutionResult, SmartSuggestion
from querycopilot.templating.tokenizer import code_only, in_code, split_spans
from querycopilot.templating.tokens import TIME_FILTER

_WHERE_RE = re.compile(r"\bWHERE\b", re.IGNORECASE)
_LIMIT_RE = re.compile(r"\bLIMIT\b", re.IGNORECASE)
_TAIL_CLAUSE_RE = re.compile(r"\b(GROUP\s+BY|ORDER\s+BY|LIMIT)\b", re.IGNORECASE)

DEFAULT_LIMIT = 1000


def _with_time_filter(query: str) -> str:
    """Insert ``WHERE $__timeFilter`` before GROUP BY / ORDER BY / LIMIT, or append it."""
    spans = split_spans(query)
    for m in _TAIL_CLAUSE_RE.finditer(query):
        if in_code(spans, m.start()):
            head = query[:m.start()].rstrip()
            return f"{head} WHERE {TIME_FILTER} {query[m.start():]}"
    return f"{query.rstrip()} WHERE {TIME_FILTER}"


def generate_suggestions(
    query: str,
    previous_results: Sequence[ExecutionResult] | None = None,
) -> list[SmartSuggestion]:
    suggestions: list[SmartSuggestion] = []
    base = (query or "").strip().rstrip(";").rstrip()
    if not base:
        return suggestions
    code = code_only(base)

    if TIME_FILTER not in code and not _WHERE_RE.search(code):
        suggestions.append(SmartSuggestion(
            type="optimization",
            title="Add time filter",
            description="Consider adding a time filter to improve query performance",
            query_modification=_with_time_filter(base),
            confidence=0.7,
            estimated_improvement="Faster execution, more relevant results",
        ))

    if not _LIMIT_RE.search(code):
        suggestions.append(SmartSuggestion(
            type="optimization",
            title="Add LIMIT clause",
            description="Add LIMIT to prevent returning too many rows",
            query_modification=f"{base} LIMIT {DEFAULT_LIMIT}",
            confidence=0.8,
            estimated_improvement="Faster execution, reduced memory usage",
        ))

    if previous_results:
        last = previous_results[-1]
        if last.success and last.row_count > 0:
            suggestions.append(SmartSuggestion(
                type="follow_up",
                title="Analyze trends",
                description="Create a time series analysis of this data",
                confidence=0.6,
                estimated_improvement="Better insights into data patterns",
            ))

    return suggestions
