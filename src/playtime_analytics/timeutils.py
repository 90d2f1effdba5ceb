"""Calendar-day bucketing and duration formatting helpers.

All instants are integer milliseconds since the Unix epoch. Calendar days
follow the local timezone, keyed as "YYYY-MM-DD".
"""

from __future__ import annotations

import time
from datetime import date, datetime, timedelta
from enum import Enum

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR

DAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
MONTH_NAMES = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]  # fmt: skip


class TimeRange(str, Enum):
    """Reporting window selectable by consumers."""

    TODAY = "today"
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    ALL = "all"

    @classmethod
    def parse(cls, value: TimeRange | str) -> TimeRange:
        """Coerce a raw string to a TimeRange, raising ValueError on anything else."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(r.value for r in cls)
            raise ValueError(f"Invalid time range {value!r} (expected one of: {valid})") from None


_RANGE_LABELS = {
    TimeRange.TODAY: "Today",
    TimeRange.LAST_7_DAYS: "Last 7 Days",
    TimeRange.LAST_30_DAYS: "Last 30 Days",
    TimeRange.ALL: "All Time",
}

# Days before today included in each window (today itself always counts)
_RANGE_LOOKBACK_DAYS = {
    TimeRange.TODAY: 0,
    TimeRange.LAST_7_DAYS: 6,
    TimeRange.LAST_30_DAYS: 29,
}


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def to_ms(dt: datetime) -> int:
    """Convert a datetime (naive = local time) to epoch milliseconds."""
    return int(dt.timestamp() * MS_PER_SECOND)


def from_ms(ts: int) -> datetime:
    """Convert epoch milliseconds to a naive local datetime."""
    return datetime.fromtimestamp(ts / MS_PER_SECOND)


def _midnight_ms(d: date) -> int:
    return to_ms(datetime(d.year, d.month, d.day))


def start_of_day(ts: int) -> int:
    """Timestamp of local midnight on the day containing ``ts``."""
    return _midnight_ms(from_ms(ts).date())


def next_day_start(ts: int) -> int:
    """Timestamp of the local midnight that ends the day containing ``ts``.

    Computed from calendar dates rather than ``start + 24h`` so days that are
    23 or 25 hours long around DST transitions are bounded correctly.
    """
    return _midnight_ms(from_ms(ts).date() + timedelta(days=1))


def days_before(ts: int, days: int) -> int:
    """Local midnight ``days`` calendar days before the day containing ``ts``."""
    return _midnight_ms(from_ms(ts).date() - timedelta(days=days))


def day_key(ts: int) -> str:
    """Format the local calendar day containing ``ts`` as "YYYY-MM-DD"."""
    return from_ms(ts).strftime("%Y-%m-%d")


def parse_day_key(key: str) -> int | None:
    """Parse a "YYYY-MM-DD" key to its local midnight, or None if malformed."""
    try:
        parsed = datetime.strptime(key, "%Y-%m-%d")
    except (TypeError, ValueError):
        return None
    return to_ms(parsed)


def build_daily_starts(days: int, now: int) -> list[int]:
    """Midnight timestamps for the last ``days`` days, oldest to newest."""
    return [days_before(now, i) for i in range(days - 1, -1, -1)]


def last_n_days_keys(n: int, now: int) -> list[str]:
    """Day keys for the last ``n`` days (today included), oldest to newest."""
    return [day_key(ts) for ts in build_daily_starts(n, now)]


def range_start(time_range: TimeRange | str, now: int) -> int:
    """Inclusive start timestamp of a reporting window."""
    time_range = TimeRange.parse(time_range)
    if time_range is TimeRange.ALL:
        return 0
    return days_before(now, _RANGE_LOOKBACK_DAYS[time_range])


def previous_period(time_range: TimeRange | str, now: int) -> tuple[int, int] | None:
    """Half-open (start, end) of the period immediately before the window.

    The previous period has the same number of calendar days as the current
    one and ends where the current window starts. "all" has no previous period.
    """
    time_range = TimeRange.parse(time_range)
    if time_range is TimeRange.ALL:
        return None
    span = _RANGE_LOOKBACK_DAYS[time_range] + 1
    end = range_start(time_range, now)
    return days_before(end, span), end


def get_time_range_label(time_range: TimeRange | str) -> str:
    """Human-readable label for a time range, e.g. "Last 7 Days"."""
    return _RANGE_LABELS[TimeRange.parse(time_range)]


# Formatting


def ms_to_minutes(ms: int | float) -> int:
    """Milliseconds to whole minutes, rounding half up."""
    return int(ms / MS_PER_MINUTE + 0.5)


def format_duration(ms: int) -> str:
    """Format a duration with seconds, e.g. "2h 30m 15s", "45m", "0s"."""
    total_sec = max(0, int(ms // MS_PER_SECOND))
    h, rem = divmod(total_sec, 3600)
    m, s = divmod(rem, 60)

    parts = []
    if h > 0:
        parts.append(f"{h}h")
    if m > 0:
        parts.append(f"{m}m")
    if s > 0 or not parts:
        parts.append(f"{s}s")
    return " ".join(parts)


def format_hours_minutes(ms: int) -> str:
    """Format a duration truncated to minutes, e.g. "1h 5m" or "45m"."""
    total_min = max(0, int(ms // MS_PER_MINUTE))
    h, m = divmod(total_min, 60)
    return f"{h}h {m}m" if h > 0 else f"{m}m"


def format_minutes(mins: int) -> str:
    """Format a minute count, e.g. "2h 30m" or "45m"."""
    h, m = divmod(mins, 60)
    return f"{h}h {m}m" if h > 0 else f"{mins}m"


def format_time_ago(ts: int, now: int) -> str:
    """Relative time such as "3 days ago" or "Just now"; largest unit wins."""
    minutes = max(0, now - ts) // MS_PER_MINUTE
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return "1 day ago" if days == 1 else f"{days} days ago"
    if hours > 0:
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    if minutes > 0:
        return "1 min ago" if minutes == 1 else f"{minutes} mins ago"
    return "Just now"
