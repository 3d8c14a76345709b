"""
Macro expansion: ``$__timeFilter`` & co. -> literal SQL fragments.

Expansion is a single leftmost-first regex pass over the code spans of the
query (string literals, quoted identifiers and comments are never touched).

Policy:
  1. A query without macros comes back unchanged; no time column is required.
  2. Errors are accumulated, never raised.  Macros that can be computed are
     substituted, failing ones are left verbatim and the caller must not
     execute ``final_query`` while ``errors`` is non-empty.
  3. A missing time column triggers the explicit fallback
     (``guess_time_column``, then ``MacroContext.fallback_time_column``),
     logged at WARNING and reported under ``timeFieldFallback``.
"""
from __future__ import annotations

import datetime
import re
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, Field

from querycopilot.core.errors import InvalidConfiguration, InvalidDuration, MissingTimeColumn
from querycopilot.core.logging import get_logger
from querycopilot.templating.time_range import (
    TimeRange,
    compute_auto_interval,
    format_interval,
    resolve,
)
from querycopilot.templating.time_units import TimeColumn, TimeUnit, format_bound, resolve_unit
from querycopilot.templating.tokenizer import code_only, map_code
from querycopilot.templating.tokens import MACRO_RE

logger = get_logger(__name__)

_COLUMN_MACROS = {"timeField", "timeFrom", "timeTo", "timeFilter"}
_RANGE_MACROS = {"timeFrom", "timeTo", "timeFilter", "interval"}


# ── Context & result ─────────────────────────────────────


@dataclass(frozen=True)
class MacroContext:
    """Everything one expansion needs.  Built per execution, never mutated."""
    database: str
    time_range: Optional[TimeRange] = None
    time_column: Optional[TimeColumn] = None
    time_zone: str = "UTC"
    max_data_points: int = 1000
    fallback_time_column: Optional[str] = "__timestamp"
    interval_style: str = "suffixed"
    now: Optional[datetime.datetime] = None

    def __post_init__(self):
        if isinstance(self.time_column, str):
            object.__setattr__(self, "time_column", TimeColumn(self.time_column))


class ExpansionResult(BaseModel):
    final_query: str
    interpolated_variables: dict[str, str] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# ── Time-field fallback ──────────────────────────────────

_TIME_ALIAS_RE = re.compile(r"\bSELECT\s+([A-Za-z_][\w.]*)\s+AS\s+time\b", re.IGNORECASE)

_COMMON_TIME_FIELDS = (
    "__timestamp",
    "timestamp",
    "time",
    "created_at",
    "updated_at",
    "event_time",
    "log_time",
)


def guess_time_column(sql: str) -> str | None:
    """Best-effort guess of the time column from the query text alone.

    Looks at code only (macros removed): ``SELECT x AS time`` first, then
    the first well-known time column name that appears as a whole word.
    False positives are possible; the result is always reported as guessed.
    """
    code = MACRO_RE.sub(" ", code_only(sql))
    m = _TIME_ALIAS_RE.search(code)
    if m:
        return m.group(1)
    for name in _COMMON_TIME_FIELDS:
        if re.search(rf"(?<!\w){re.escape(name)}(?!\w)", code, re.IGNORECASE):
            return name
    return None


def _fallback_column(sql: str, context: MacroContext, variables: dict[str, str]) -> TimeColumn | None:
    guessed = guess_time_column(sql)
    if guessed:
        logger.warning("No time column in context -- using guessed column '%s'", guessed)
        variables["timeFieldFallback"] = f"{guessed} (guessed)"
        return TimeColumn(guessed)
    if context.fallback_time_column:
        logger.warning(
            "No time column in context -- using default column '%s'", context.fallback_time_column
        )
        variables["timeFieldFallback"] = f"{context.fallback_time_column} (default)"
        return TimeColumn(context.fallback_time_column)
    return None


# ── Expansion ────────────────────────────────────────────


def find_macros(sql: str) -> set[str]:
    """Names (without ``$__``) of the macros used in code spans of *sql*."""
    return {m.group(1) for m in MACRO_RE.finditer(code_only(sql or ""))}


def expand(sql: str, context: MacroContext, now: datetime.datetime | None = None) -> ExpansionResult:
    """Substitute every computable macro in *sql*.

    Parameters
    ----------
    sql : str
        Query text, ideally already sanitized.
    context : MacroContext
        Database, time range, time column and formatting options.
    now : datetime, optional
        Reference instant for relative ranges (defaults to ``context.now``,
        then the wall clock).
    """
    used = find_macros(sql)
    if not used:
        return ExpansionResult(final_query=sql)

    now = now or context.now
    errors: list[str] = []
    variables: dict[str, str] = {}
    values: dict[str, str] = {}

    # 1. Time column (explicit, then fallback)
    column: TimeColumn | None = None
    unit: TimeUnit | None = None
    if used & _COLUMN_MACROS:
        column = context.time_column or _fallback_column(sql, context, variables)
        if column is None:
            errors.append(str(MissingTimeColumn(
                f"Query uses {', '.join('$__' + n for n in sorted(used & _COLUMN_MACROS))} "
                "but no time column is selected and no fallback is configured."
            )))
        else:
            values["timeField"] = column.name
            try:
                unit = resolve_unit(column, now)
                variables["timeUnit"] = unit.value
            except InvalidConfiguration as exc:
                errors.append(str(exc))

    # 2. Time range
    bounds: tuple[datetime.datetime, datetime.datetime] | None = None
    if used & _RANGE_MACROS:
        if context.time_range is None:
            names = ", ".join("$__" + n for n in sorted(used & _RANGE_MACROS))
            errors.append(f"Query uses {names} but no time range is selected.")
        else:
            try:
                bounds = resolve(context.time_range, now=now, time_zone=context.time_zone)
            except (InvalidDuration, InvalidConfiguration) as exc:
                errors.append(str(exc))

    # 3. Formatted bounds and filter
    if column is not None and unit is not None and bounds is not None:
        try:
            time_from = format_bound(bounds[0], unit, context.time_zone)
            time_to = format_bound(bounds[1], unit, context.time_zone)
        except InvalidConfiguration as exc:
            errors.append(str(exc))
        else:
            values["timeFrom"] = time_from
            values["timeTo"] = time_to
            values["timeFilter"] = f"{column.name} >= {time_from} AND {column.name} <= {time_to}"

    # 4. Interval
    if "interval" in used and bounds is not None:
        try:
            bucket = compute_auto_interval(bounds[0], bounds[1], context.max_data_points)
            values["interval"] = format_interval(bucket, context.interval_style)
        except InvalidConfiguration as exc:
            errors.append(str(exc))

    variables.update(values)

    def _substitute(m: re.Match) -> str:
        return values.get(m.group(1), m.group(0))

    final_query = map_code(sql, lambda text: MACRO_RE.sub(_substitute, text))

    if errors:
        logger.warning("Macro expansion finished with %d error(s): %s", len(errors), "; ".join(errors))
    else:
        logger.info("Expanded macros %s", ", ".join(sorted(used)))
    return ExpansionResult(final_query=final_query, interpolated_variables=variables, errors=errors)
