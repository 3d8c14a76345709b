"""
Time-column units: conversion of instants to column values, and the
best-effort ``auto`` unit inference.

Raw integer timestamp columns carry no unit metadata, so when a column is
declared with ``time_unit=auto`` the unit is guessed from the SQL type, the
column name and (when available) sample values.  The guess is heuristic and
not guaranteed; callers that know the unit should always pass it explicitly.
"""
from __future__ import annotations

import datetime
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from querycopilot.core.errors import InvalidConfiguration
from querycopilot.core.logging import get_logger

logger = get_logger(__name__)

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


class TimeUnit(str, Enum):
    SECONDS = "s"
    MILLISECONDS = "ms"
    MICROSECONDS = "us"
    NANOSECONDS = "ns"
    NATIVE = "native"  # timestamp/date typed column, compared against literals
    AUTO = "auto"

    @classmethod
    def parse(cls, value: str | "TimeUnit" | None) -> "TimeUnit":
        """Accept enum values plus the long names used by schema metadata."""
        if isinstance(value, TimeUnit):
            return value
        if not value:
            return cls.AUTO
        key = value.strip().lower()
        aliases = {
            "seconds": cls.SECONDS, "second": cls.SECONDS, "sec": cls.SECONDS,
            "milliseconds": cls.MILLISECONDS, "millisecond": cls.MILLISECONDS,
            "microseconds": cls.MICROSECONDS, "microsecond": cls.MICROSECONDS, "μs": cls.MICROSECONDS,
            "nanoseconds": cls.NANOSECONDS, "nanosecond": cls.NANOSECONDS,
        }
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError as exc:
            raise InvalidConfiguration(f"Unknown time unit '{value}'") from exc


_MICROS_PER_UNIT = {
    TimeUnit.SECONDS: 1_000_000,
    TimeUnit.MILLISECONDS: 1_000,
    TimeUnit.MICROSECONDS: 1,
}


@dataclass(frozen=True)
class TimeColumn:
    """Descriptor of the column the time macros refer to."""
    name: str
    data_type: str | None = None
    time_unit: TimeUnit = TimeUnit.AUTO
    samples: tuple = ()  # observed raw values, used only to infer an auto unit

    def __post_init__(self):
        object.__setattr__(self, "time_unit", TimeUnit.parse(self.time_unit))
        object.__setattr__(self, "samples", tuple(self.samples or ()))


# ── Conversion ──────────────────────────────────────────


def _ensure_aware(instant: datetime.datetime) -> datetime.datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=datetime.timezone.utc)
    return instant


def to_column_unit(instant: datetime.datetime, unit: TimeUnit) -> int:
    """Exact integer epoch of *instant* in *unit* (s / ms / us / ns).

    Seconds and milliseconds are floored.  Native and auto units must be
    resolved by the caller first.
    """
    unit = TimeUnit.parse(unit)
    micros = (_ensure_aware(instant) - EPOCH) // datetime.timedelta(microseconds=1)
    if unit is TimeUnit.NANOSECONDS:
        return micros * 1000
    if unit in _MICROS_PER_UNIT:
        return micros // _MICROS_PER_UNIT[unit]
    raise InvalidConfiguration(f"Cannot convert an instant to epoch unit '{unit.value}'")


def get_zone(time_zone: str) -> datetime.tzinfo:
    if not time_zone or time_zone.upper() == "UTC":
        return datetime.timezone.utc
    try:
        return ZoneInfo(time_zone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidConfiguration(f"Unknown time zone '{time_zone}'") from exc


def format_bound(instant: datetime.datetime, unit: TimeUnit, time_zone: str = "UTC") -> str:
    """Render one time bound as a SQL fragment for a column of *unit*."""
    if unit is TimeUnit.NATIVE:
        local = _ensure_aware(instant).astimezone(get_zone(time_zone))
        fmt = "%Y-%m-%d %H:%M:%S.%f" if local.microsecond else "%Y-%m-%d %H:%M:%S"
        return f"'{local.strftime(fmt)}'"
    return str(to_column_unit(instant, unit))


# ── Inference ───────────────────────────────────────────

_NATIVE_TYPE_RE = re.compile(r"\b(timestamp\w*|datetime\w*|date|time|timestamptz)\b", re.IGNORECASE)

_INT64_TYPES = {"bigint", "int64", "long", "int8", "ubigint", "uint64", "hugeint", "uhugeint"}
_INT32_TYPES = {"int", "integer", "int32", "int4", "uinteger", "uint32", "mediumint"}

_INT64_MAX = 2**63 - 1

_NAME_SUFFIXES = (
    ("_ns", TimeUnit.NANOSECONDS),
    ("_us", TimeUnit.MICROSECONDS),
    ("_ms", TimeUnit.MILLISECONDS),
    ("_s", TimeUnit.SECONDS),
)

_SAMPLE_ORDER = (
    (TimeUnit.NANOSECONDS, 1_000_000_000),
    (TimeUnit.MICROSECONDS, 1_000_000),
    (TimeUnit.MILLISECONDS, 1_000),
    (TimeUnit.SECONDS, 1),
)


def _plausible_year(epoch_seconds: float, now: datetime.datetime) -> bool:
    try:
        year = (EPOCH + datetime.timedelta(seconds=epoch_seconds)).year
    except OverflowError:
        return False
    return 1971 <= year <= now.year + 1


def infer_unit_from_samples(
    samples: Iterable[object],
    now: datetime.datetime | None = None,
) -> TimeUnit | None:
    """Pick the unit under which the sample magnitudes land in a plausible year."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    values = [
        float(v) for v in samples
        if isinstance(v, (int, float)) and not isinstance(v, bool) and v > 0
    ]
    if not values:
        return None
    avg = sum(values) / len(values)
    for unit, per_second in _SAMPLE_ORDER:
        if _plausible_year(avg / per_second, now):
            return unit
    return None


def infer_time_unit(
    data_type: str | None,
    column_name: str = "",
    samples: Iterable[object] | None = None,
    now: datetime.datetime | None = None,
) -> TimeUnit:
    """Best-effort unit for an ``auto`` column.  Never returns ``AUTO``.

    Order of evidence:
      1. native temporal SQL type            -> NATIVE (never converted numerically)
      2. sample magnitudes at a plausible year
      3. unit suffix in the column name, ``__timestamp`` -> ns
      4. integer width: 64-bit holds today's nanosecond epoch -> ns, 32-bit -> s
      5. milliseconds
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    dtype = (data_type or "").strip().lower()
    name = (column_name or "").strip().lower()

    if dtype and _NATIVE_TYPE_RE.search(dtype) and not any(t in dtype for t in ("int", "long")):
        return TimeUnit.NATIVE

    if samples is not None:
        from_samples = infer_unit_from_samples(samples, now)
        if from_samples is not None:
            return from_samples

    for suffix, unit in _NAME_SUFFIXES:
        if name.endswith(suffix) or f"{suffix}_" in name:
            return unit
    if name == "__timestamp":
        return TimeUnit.NANOSECONDS

    base_type = dtype.split("(")[0].strip()
    if base_type in _INT64_TYPES and to_column_unit(now, TimeUnit.NANOSECONDS) <= _INT64_MAX:
        return TimeUnit.NANOSECONDS
    if base_type in _INT32_TYPES:
        return TimeUnit.SECONDS

    logger.debug("No unit evidence for column=%s type=%s -- assuming ms", column_name, data_type)
    return TimeUnit.MILLISECONDS


def resolve_unit(column: TimeColumn, now: datetime.datetime | None = None) -> TimeUnit:
    """The concrete unit of *column*: explicit when declared, inferred for auto."""
    if column.time_unit is not TimeUnit.AUTO:
        return column.time_unit
    unit = infer_time_unit(column.data_type, column.name, samples=column.samples or None, now=now)
    logger.info("Inferred time unit %s for column %s (type=%s)", unit.value, column.name, column.data_type)
    return unit
