"""
Unit tests -- quick-range presets from config/time_ranges.yml.
"""
import datetime

import pytest

from querycopilot.core.errors import InvalidConfiguration
from querycopilot.templating.presets import QuickRange, list_presets, load_presets, preset_range
from querycopilot.templating.time_range import RelativeTimeRange, resolve

NOW = datetime.datetime(2024, 6, 1, tzinfo=datetime.timezone.utc)


def test_presets_load():
    presets = list_presets()
    keys = [p.key for p in presets]
    assert keys[0] == "none"
    assert "last_1h" in keys
    assert len(keys) == len(set(keys))


def test_every_preset_resolves():
    for preset in list_presets():
        if preset.time_range is None:
            continue
        start, end = resolve(preset.time_range, now=NOW)
        assert start < end == NOW


def test_lookup_by_key_or_display():
    assert preset_range("last_1h").time_range == RelativeTimeRange("now-1h", "now")
    assert preset_range("Last 7 days").key == "last_7d"
    assert preset_range("  LAST 1 YEAR ").start == "now-52w"


def test_no_filter_preset():
    assert preset_range("none").time_range is None


def test_unknown_preset():
    with pytest.raises(InvalidConfiguration):
        preset_range("last fortnight")


def test_invalid_preset_file(tmp_path):
    path = tmp_path / "ranges.yml"
    path.write_text("presets:\n  - key: bad\n    start: now-3y\n    end: now\n")
    with pytest.raises(InvalidConfiguration):
        load_presets(str(path))


def test_custom_preset_file(tmp_path):
    path = tmp_path / "ranges.yml"
    path.write_text("presets:\n  - key: q\n    display: Quarter\n    start: 13w\n")
    presets = load_presets(str(path))
    assert presets == (QuickRange("q", "Quarter", "13w", None),)
    assert presets[0].to_dict()["end"] is None
