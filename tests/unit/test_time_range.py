"""
Unit tests -- time-range resolution and auto interval.
"""
import datetime

import pytest

from querycopilot.core.errors import InvalidConfiguration, InvalidDuration
from querycopilot.templating.time_range import (
    AbsoluteTimeRange,
    RelativeTimeRange,
    compute_auto_interval,
    format_interval,
    parse_duration,
    resolve,
    time_range_from_strings,
)

UTC = datetime.timezone.utc
NOW = datetime.datetime(2024, 1, 1, 12, 0, 0, 123456, tzinfo=UTC)


# ── parse_duration ──────────────────────────────────────


@pytest.mark.parametrize("expr, seconds", [
    ("30s", 30),
    ("5m", 300),
    ("1h", 3600),
    ("2d", 2 * 86400),
    ("1w", 7 * 86400),
])
def test_parse_duration_units(expr, seconds):
    assert parse_duration(expr) == datetime.timedelta(seconds=seconds)


@pytest.mark.parametrize("expr", ["5y", "1M", "abc", "", "h", "1.5h", "-1h"])
def test_parse_duration_rejects(expr):
    with pytest.raises(InvalidDuration):
        parse_duration(expr)


def test_invalid_duration_is_value_error():
    with pytest.raises(ValueError):
        parse_duration("10 parsecs")


# ── resolve (relative) ──────────────────────────────────


@pytest.mark.parametrize("hours", [1, 3, 6, 12, 24, 168])
def test_relative_range_is_exact(hours):
    start, end = resolve(RelativeTimeRange(f"now-{hours}h", "now"), now=NOW)
    assert end == NOW
    assert start == end - datetime.timedelta(hours=hours)
    assert start <= end


def test_resolved_instants_are_utc_aware():
    start, end = resolve(RelativeTimeRange(), now=NOW)
    assert start.tzinfo is not None
    assert start.utcoffset() == datetime.timedelta(0)
    assert end.utcoffset() == datetime.timedelta(0)


def test_default_range_is_last_hour():
    start, end = resolve(RelativeTimeRange(), now=NOW)
    assert end - start == datetime.timedelta(hours=1)


def test_bare_duration_means_ago():
    start, _ = resolve(RelativeTimeRange("30m", "now"), now=NOW)
    assert start == NOW - datetime.timedelta(minutes=30)


def test_end_can_be_offset():
    start, end = resolve(RelativeTimeRange("now-2h", "now-1h"), now=NOW)
    assert end == NOW - datetime.timedelta(hours=1)
    assert start == NOW - datetime.timedelta(hours=2)


def test_end_may_lie_in_future():
    _, end = resolve(RelativeTimeRange("now-1h", "now+1h"), now=NOW)
    assert end == NOW + datetime.timedelta(hours=1)


def test_start_in_future_rejected():
    with pytest.raises(InvalidDuration):
        resolve(RelativeTimeRange("now+1h", "now"), now=NOW)


@pytest.mark.parametrize("start", ["now-0h", "0m"])
def test_non_positive_start_rejected(start):
    with pytest.raises(InvalidDuration):
        resolve(RelativeTimeRange(start, "now"), now=NOW)


def test_unknown_unit_rejected():
    with pytest.raises(InvalidDuration):
        resolve(RelativeTimeRange("now-3y", "now"), now=NOW)


def test_garbage_endpoint_rejected():
    with pytest.raises(InvalidDuration):
        resolve(RelativeTimeRange("yesterday-ish", "now"), now=NOW)


def test_iso_endpoint_with_z_suffix():
    start, end = resolve(RelativeTimeRange("2024-01-01T00:00:00Z", "now"), now=NOW)
    assert start == datetime.datetime(2024, 1, 1, tzinfo=UTC)
    assert end == NOW


def test_inverted_relative_range_is_swapped():
    start, end = resolve(RelativeTimeRange("now-1h", "now-2h"), now=NOW)
    assert start == NOW - datetime.timedelta(hours=2)
    assert end == NOW - datetime.timedelta(hours=1)


# ── resolve (absolute) ──────────────────────────────────


def test_absolute_range_passthrough():
    a = datetime.datetime(2024, 3, 1, tzinfo=UTC)
    b = datetime.datetime(2024, 3, 2, tzinfo=UTC)
    assert resolve(AbsoluteTimeRange(a, b)) == (a, b)


def test_absolute_range_swapped_when_inverted():
    a = datetime.datetime(2024, 3, 1, tzinfo=UTC)
    b = datetime.datetime(2024, 3, 2, tzinfo=UTC)
    assert resolve(AbsoluteTimeRange(b, a)) == (a, b)


def test_naive_absolute_read_in_time_zone():
    naive = datetime.datetime(2024, 1, 15, 12, 0)
    start, _ = resolve(
        AbsoluteTimeRange(naive, naive + datetime.timedelta(hours=1)),
        time_zone="Europe/Berlin",
    )
    assert start == datetime.datetime(2024, 1, 15, 11, 0, tzinfo=UTC)


def test_unknown_time_zone_rejected():
    naive = datetime.datetime(2024, 1, 15, 12, 0)
    with pytest.raises(InvalidConfiguration):
        resolve(AbsoluteTimeRange(naive, naive), time_zone="Mars/Olympus_Mons")


def test_time_range_from_strings_defaults_end():
    assert time_range_from_strings("now-6h", "") == RelativeTimeRange("now-6h", "now")


# ── compute_auto_interval ───────────────────────────────


def _span(**kwargs):
    return NOW - datetime.timedelta(**kwargs), NOW


@pytest.mark.parametrize("span, points, expected", [
    ({"hours": 1}, 1000, datetime.timedelta(seconds=5)),
    ({"hours": 1}, 100, datetime.timedelta(minutes=1)),
    ({"hours": 24}, 1000, datetime.timedelta(minutes=5)),
    ({"days": 7}, 1000, datetime.timedelta(minutes=15)),
    ({"days": 30}, 1000, datetime.timedelta(hours=1)),
    ({"days": 365}, 100, datetime.timedelta(days=7)),
    ({"seconds": 10}, 1000, datetime.timedelta(seconds=1)),
])
def test_auto_interval_ladder(span, points, expected):
    start, end = _span(**span)
    assert compute_auto_interval(start, end, points) == expected


def test_auto_interval_zero_width_is_one_second():
    assert compute_auto_interval(NOW, NOW, 1000) == datetime.timedelta(seconds=1)


def test_auto_interval_beyond_ladder_rounds_to_days():
    start, end = _span(days=800)
    assert compute_auto_interval(start, end, 1) == datetime.timedelta(days=800)
    start, end = _span(days=800, hours=1)
    assert compute_auto_interval(start, end, 1) == datetime.timedelta(days=801)


def test_auto_interval_is_monotonic():
    widths = [datetime.timedelta(seconds=s) for s in range(0, 40 * 86400, 7919)]
    previous = datetime.timedelta(0)
    for width in widths:
        interval = compute_auto_interval(NOW - width, NOW, 500)
        assert interval >= previous
        assert interval * 500 >= width
        previous = interval


@pytest.mark.parametrize("points", [0, -5])
def test_auto_interval_rejects_non_positive_points(points):
    with pytest.raises(InvalidConfiguration):
        compute_auto_interval(*_span(hours=1), points)


# ── format_interval ─────────────────────────────────────


def test_format_interval_styles():
    minute = datetime.timedelta(minutes=1)
    assert format_interval(minute) == "60s"
    assert format_interval(minute, "sql") == "INTERVAL '60 seconds'"
    assert format_interval(minute, "seconds") == "60"


def test_format_interval_unknown_style():
    with pytest.raises(InvalidConfiguration):
        format_interval(datetime.timedelta(seconds=5), "fortnights")
