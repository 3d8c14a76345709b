"""
Time-range resolution and auto-interval computation.

A time range is either relative (``now-1h`` .. ``now``) or absolute (two
instants).  ``resolve`` turns either into concrete, timezone-aware UTC
instants; ``compute_auto_interval`` picks a human-friendly bucket width so
the range splits into at most ``max_data_points`` buckets.
"""
from __future__ import annotations

import datetime
import math
import re
from dataclasses import dataclass
from typing import Union

from querycopilot.core.errors import InvalidConfiguration, InvalidDuration
from querycopilot.core.logging import get_logger
from querycopilot.templating.time_units import get_zone

logger = get_logger(__name__)


# ── Time-range descriptors ───────────────────────────────


@dataclass(frozen=True)
class RelativeTimeRange:
    """Endpoints are ``now``, ``now-<n><unit>``, ``<n><unit>`` (ago) or ISO-8601."""
    start: str = "now-1h"
    end: str = "now"


@dataclass(frozen=True)
class AbsoluteTimeRange:
    start: datetime.datetime
    end: datetime.datetime


TimeRange = Union[RelativeTimeRange, AbsoluteTimeRange]


# ── Duration parsing ─────────────────────────────────────

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 7 * 86400,
}

_DURATION_RE = re.compile(r"^(\d+)([a-zA-Z]+)$")

_NOW_RE = re.compile(r"^now(?:\s*([+-])\s*(\S+))?$")


def parse_duration(expr: str) -> datetime.timedelta:
    """Parse ``<integer><unit>`` with unit in s, m, h, d, w."""
    text = (expr or "").strip()
    m = _DURATION_RE.match(text)
    if not m:
        raise InvalidDuration(f"Invalid duration '{expr}'. Expected <integer><unit>, e.g. '5m' or '1h'.")
    amount, unit = int(m.group(1)), m.group(2)
    if unit not in _UNIT_SECONDS:
        raise InvalidDuration(
            f"Unrecognised duration unit '{unit}' in '{expr}'. "
            f"Allowed: {', '.join(_UNIT_SECONDS)}"
        )
    return datetime.timedelta(seconds=amount * _UNIT_SECONDS[unit])


def _parse_instant(text: str, time_zone: str) -> datetime.datetime | None:
    candidate = text.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.datetime.fromisoformat(candidate)
    except ValueError:
        return None
    return _as_utc(parsed, time_zone)


def _as_utc(instant: datetime.datetime, time_zone: str) -> datetime.datetime:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=get_zone(time_zone))
    return instant.astimezone(datetime.timezone.utc)


def _resolve_endpoint(expr: str, now: datetime.datetime, time_zone: str, *, is_start: bool) -> datetime.datetime:
    text = (expr or "").strip()
    if not text:
        raise InvalidDuration("Time range endpoint is empty.")

    m = _NOW_RE.match(text)
    if m:
        sign, amount = m.group(1), m.group(2)
        if sign is None:
            return now
        delta = parse_duration(amount)
        if sign == "+":
            if is_start:
                raise InvalidDuration(f"Range start '{expr}' cannot lie in the future.")
            return now + delta
        if is_start and delta <= datetime.timedelta(0):
            raise InvalidDuration(f"Range start '{expr}' must be a positive offset from now.")
        return now - delta

    if _DURATION_RE.match(text):
        delta = parse_duration(text)
        if is_start and delta <= datetime.timedelta(0):
            raise InvalidDuration(f"Range start '{expr}' must be a positive offset from now.")
        return now - delta

    instant = _parse_instant(text, time_zone)
    if instant is None:
        raise InvalidDuration(f"Cannot parse time expression '{expr}'.")
    return instant


def resolve(
    time_range: TimeRange,
    now: datetime.datetime | None = None,
    time_zone: str = "UTC",
) -> tuple[datetime.datetime, datetime.datetime]:
    """Resolve *time_range* to ``(start, end)`` UTC instants with ``start <= end``.

    Inverted ranges are swapped (with a warning) rather than rejected.

    Raises
    ------
    InvalidDuration
        If a relative endpoint cannot be parsed or a start offset is not positive.
    """
    now = _as_utc(now, "UTC") if now is not None else datetime.datetime.now(datetime.timezone.utc)

    if isinstance(time_range, AbsoluteTimeRange):
        start = _as_utc(time_range.start, time_zone)
        end = _as_utc(time_range.end, time_zone)
    elif isinstance(time_range, RelativeTimeRange):
        start = _resolve_endpoint(time_range.start, now, time_zone, is_start=True)
        end = _resolve_endpoint(time_range.end, now, time_zone, is_start=False)
    else:
        raise InvalidConfiguration(f"Unsupported time range type: {type(time_range).__name__}")

    if start > end:
        logger.warning("Inverted time range %s > %s -- swapping", start.isoformat(), end.isoformat())
        start, end = end, start
    return start, end


def time_range_from_strings(start: str, end: str = "now") -> TimeRange:
    """Build a descriptor from the string pair the UI and LLM produce."""
    return RelativeTimeRange(start=start, end=end or "now")


# ── Auto interval ────────────────────────────────────────

BUCKET_LADDER: tuple[datetime.timedelta, ...] = tuple(
    datetime.timedelta(seconds=s)
    for s in (1, 5, 10, 30, 60, 300, 900, 3600, 86400, 7 * 86400, 30 * 86400, 365 * 86400)
)

_DAY = datetime.timedelta(days=1)


def compute_auto_interval(
    start: datetime.datetime,
    end: datetime.datetime,
    max_data_points: int,
) -> datetime.timedelta:
    """Smallest ladder bucket >= ceil((end - start) / max_data_points).

    Ranges too wide for the ladder round up to whole days.  Never below 1s.
    """
    if not isinstance(max_data_points, int) or max_data_points <= 0:
        raise InvalidConfiguration(f"max_data_points must be a positive integer, got {max_data_points!r}")
    if end < start:
        raise InvalidConfiguration("Interval computation needs start <= end.")

    span_us = (end - start) // datetime.timedelta(microseconds=1)
    raw = datetime.timedelta(microseconds=-(-span_us // max_data_points))

    for bucket in BUCKET_LADDER:
        if bucket >= raw:
            return bucket
    return datetime.timedelta(days=math.ceil(raw / _DAY))


_INTERVAL_STYLES = ("suffixed", "sql", "seconds")


def format_interval(interval: datetime.timedelta, style: str = "suffixed") -> str:
    """Render a bucket width for the backend.

    ``suffixed`` -> ``60s``; ``sql`` -> ``INTERVAL '60 seconds'``; ``seconds`` -> ``60``.
    """
    seconds = max(1, math.ceil(interval.total_seconds()))
    if style == "suffixed":
        return f"{seconds}s"
    if style == "sql":
        return f"INTERVAL '{seconds} seconds'"
    if style == "seconds":
        return str(seconds)
    raise InvalidConfiguration(
        f"Unknown interval style '{style}'. Choose from: {', '.join(_INTERVAL_STYLES)}"
    )
