"""Trend classification for short playtime series and period comparisons."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from playtime_analytics.timeutils import MS_PER_MINUTE

# Ranking view: ignore swings under 2 minutes between the ends of the series
ABSOLUTE_DEADZONE_MS = 2 * MS_PER_MINUTE

# Per-map detail view: ignore swings within +/-2%
PERCENT_DEADZONE = 2.0


class TrendPolicy(str, Enum):
    """Deadzone convention used to classify a trend series."""

    ABSOLUTE = "absolute"
    PERCENT = "percent"


@dataclass(frozen=True)
class Trend:
    """Classified trend of a series."""

    direction: str  # 'up', 'down', 'flat'
    change_pct: float | None
    label: str


def _ends(series: Sequence[float]) -> tuple[float, float]:
    if not series:
        return 0, 0
    return series[0], series[-1]


def calculate_trend_percentage(series: Sequence[float]) -> float | None:
    """Percentage change from the first to the last value.

    Returns None when the first value is zero or negative, since no
    meaningful ratio exists (a 0 -> positive series is reported as NEW).

    Examples:
        [10, 15, 20] -> 100.0
        [20, 15, 10] -> -50.0
        [0, 0, 10]   -> None
    """
    first, last = _ends(series)
    if first <= 0:
        return None
    return (last - first) / first * 100


def is_new(series: Sequence[float]) -> bool:
    """True when the series starts at zero and ends with activity."""
    first, last = _ends(series)
    return first == 0 and last > 0


def trend_direction(series: Sequence[float], policy: TrendPolicy = TrendPolicy.ABSOLUTE) -> str:
    """Classify a series as 'up', 'down' or 'flat' under the given policy."""
    first, last = _ends(series)

    if policy is TrendPolicy.ABSOLUTE:
        delta = last - first
        if abs(delta) < ABSOLUTE_DEADZONE_MS:
            return "flat"
        return "up" if delta > 0 else "down"

    pct = calculate_trend_percentage(series)
    if pct is None:
        return "up" if is_new(series) else "flat"
    if pct > PERCENT_DEADZONE:
        return "up"
    if pct < -PERCENT_DEADZONE:
        return "down"
    return "flat"


def format_trend_label(series: Sequence[float]) -> str:
    """Label for a series: "+25%", "-10%", "NEW", or "—" when undefined."""
    pct = calculate_trend_percentage(series)
    if pct is None:
        return "NEW" if is_new(series) else "—"
    rounded = round(pct)
    return f"+{rounded}%" if rounded > 0 else f"{rounded}%"


def classify_trend(series: Sequence[float], policy: TrendPolicy = TrendPolicy.ABSOLUTE) -> Trend:
    """Direction, percentage change and label for a series in one call."""
    return Trend(
        direction=trend_direction(series, policy),
        change_pct=calculate_trend_percentage(series),
        label=format_trend_label(series),
    )


def compare_values(current: float, previous: float, has_previous: bool = True) -> dict:
    """Describe the change from a previous period to the current one.

    Without previous data only an icon is reported, never a percentage.

    Returns:
        Dict with current, previous, change_pct (absolute, rounded, or None),
        direction ('up', 'down', 'flat', 'none') and icon.
    """
    if not has_previous:
        return {
            "current": current,
            "previous": previous,
            "change_pct": None,
            "direction": "none",
            "icon": "—",
        }

    if previous == 0:
        pct = 0.0 if current == 0 else 100.0
    else:
        pct = (current - previous) / previous * 100

    if pct > 0:
        direction, icon = "up", "↗"
    elif pct < 0:
        direction, icon = "down", "↘"
    else:
        direction, icon = "flat", "→"

    return {
        "current": current,
        "previous": previous,
        "change_pct": abs(round(pct)),
        "direction": direction,
        "icon": icon,
    }
