"""
Quick-range presets ("Last 1 hour", "Last 7 days", ...) loaded from
``config/time_ranges.yml``.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from querycopilot.core.errors import InvalidConfiguration
from querycopilot.core.logging import get_logger
from querycopilot.templating.time_range import RelativeTimeRange, parse_duration

logger = get_logger(__name__)

_PRESETS_PATH = Path(__file__).resolve().parents[2] / "config" / "time_ranges.yml"


@dataclass(frozen=True)
class QuickRange:
    key: str
    display: str
    start: str | None
    end: str | None

    @property
    def time_range(self) -> RelativeTimeRange | None:
        """``None`` for the "no time filter" preset."""
        if not self.start:
            return None
        return RelativeTimeRange(start=self.start, end=self.end or "now")

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "display": self.display, "start": self.start, "end": self.end}


def _check_endpoint(key: str, expr: str | None) -> None:
    if not expr or expr == "now":
        return
    offset = expr[len("now-"):] if expr.startswith("now-") else expr
    try:
        parse_duration(offset)
    except ValueError as exc:
        raise InvalidConfiguration(f"Preset '{key}': {exc}") from exc


def _parse_presets(raw: dict[str, Any]) -> tuple[QuickRange, ...]:
    presets = []
    for item in raw.get("presets", []):
        preset = QuickRange(
            key=item["key"],
            display=item.get("display", item["key"]),
            start=item.get("start"),
            end=item.get("end"),
        )
        _check_endpoint(preset.key, preset.start)
        _check_endpoint(preset.key, preset.end)
        presets.append(preset)
    return tuple(presets)


@lru_cache
def load_presets(path: str | None = None) -> tuple[QuickRange, ...]:
    """Load and cache the preset list."""
    with open(path or _PRESETS_PATH) as f:
        raw = yaml.safe_load(f) or {}
    presets = _parse_presets(raw)
    logger.debug("Loaded %d quick-range presets", len(presets))
    return presets


def list_presets() -> list[QuickRange]:
    return list(load_presets())


def preset_range(key_or_display: str) -> QuickRange:
    """Look a preset up by key (``last_1h``) or display text (``Last 1 hour``)."""
    wanted = (key_or_display or "").strip().lower()
    for preset in load_presets():
        if wanted in (preset.key.lower(), preset.display.lower()):
            return preset
    raise InvalidConfiguration(f"Unknown quick range '{key_or_display}'")
