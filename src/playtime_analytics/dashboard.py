"""Dashboard, library and overview aggregations over the session store.

Every function here is a pure read of a store snapshot; results are plain
JSON-ready dicts.
"""

from __future__ import annotations

from playtime_analytics.ranking import rank_order, sum_time_by_map
from playtime_analytics.store import SessionStore, StoreState
from playtime_analytics.timeutils import (
    DAY_NAMES,
    MONTH_NAMES,
    TimeRange,
    build_daily_starts,
    day_key,
    days_before,
    format_duration,
    format_time_ago,
    from_ms,
    last_n_days_keys,
    ms_to_minutes,
    next_day_start,
    parse_day_key,
    previous_period,
    range_start,
)
from playtime_analytics.trends import compare_values

TOP_N = 5
RECENT_SESSIONS_LIMIT = 10
# Longest raw map id shown as a chart label
LABEL_MAX_LEN = 14

_TODAY_LABELS = ["6am", "9am", "12pm", "3pm", "6pm", "9pm"]
_TODAY_FIRST_SLOT_HOUR = 6
_TODAY_SLOT_HOURS = 3

_PERIOD_LABELS = {
    TimeRange.TODAY: ("Today", "Yesterday"),
    TimeRange.LAST_7_DAYS: ("This Week", "Last Week"),
    TimeRange.LAST_30_DAYS: ("This Month", "Last Month"),
    TimeRange.ALL: ("All Time", "N/A"),
}


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def _day_total_ms(state: StoreState, key: str) -> int:
    return sum(state.daily_totals.get(key, {}).values())


def _title(state: StoreState, map_id: str) -> str | None:
    meta = state.maps.get(map_id)
    return meta.title if meta else None


def _recent_months(now: int, count: int = 4) -> list[tuple[int, int]]:
    """(year, month) for the current month and the ``count - 1`` before it, oldest first."""
    current = from_ms(now)
    months = []
    year, month = current.year, current.month
    for _ in range(count):
        months.append((year, month))
        year, month = (year - 1, 12) if month == 1 else (year, month - 1)
    return months[::-1]


def _labels_for_range(time_range: TimeRange, now: int) -> list[str]:
    if time_range is TimeRange.TODAY:
        return list(_TODAY_LABELS)
    if time_range is TimeRange.LAST_7_DAYS:
        return [DAY_NAMES[from_ms(ts).weekday()] for ts in build_daily_starts(7, now)]
    if time_range is TimeRange.LAST_30_DAYS:
        return [f"Week {i}" for i in range(1, 5)]
    return [MONTH_NAMES[month - 1] for _, month in _recent_months(now)]


# Playtime trend


def _playtime_trend(state: StoreState, time_range: TimeRange, now: int) -> dict:
    labels = _labels_for_range(time_range, now)

    if time_range is TimeRange.TODAY:
        # Simplified cumulative estimate, not a true per-slot histogram: each
        # slot that has started shows today's total divided by its position.
        total_mins = ms_to_minutes(_day_total_ms(state, day_key(now)))
        current_hour = from_ms(now).hour
        data = []
        for idx in range(len(labels)):
            slot_start = _TODAY_FIRST_SLOT_HOUR + idx * _TODAY_SLOT_HOURS
            data.append(_round_half_up(total_mins / (idx + 1)) if current_hour >= slot_start else 0)
        return {"range": time_range.value, "labels": labels, "data": data}

    if time_range is TimeRange.LAST_7_DAYS:
        data = [ms_to_minutes(_day_total_ms(state, key)) for key in last_n_days_keys(7, now)]
        return {"range": time_range.value, "labels": labels, "data": data}

    if time_range is TimeRange.LAST_30_DAYS:
        # Days 0-6 ago land in the last bucket; days 21-29 share the first
        buckets_ms = [0, 0, 0, 0]
        for days_ago in range(30):
            week_idx = min(3, days_ago // 7)
            buckets_ms[3 - week_idx] += _day_total_ms(state, day_key(days_before(now, days_ago)))
        return {
            "range": time_range.value,
            "labels": labels,
            "data": [ms_to_minutes(ms) for ms in buckets_ms],
        }

    months = _recent_months(now)
    buckets_ms = [0] * len(months)
    for key, maps in state.daily_totals.items():
        ts = parse_day_key(key)
        if ts is None:
            continue
        day = from_ms(ts)
        month = (day.year, day.month)
        if month in months:
            buckets_ms[months.index(month)] += sum(maps.values())
    return {
        "range": time_range.value,
        "labels": labels,
        "data": [ms_to_minutes(ms) for ms in buckets_ms],
    }


def get_playtime_trend(store: SessionStore, time_range: TimeRange | str) -> dict:
    """Minutes played per bucket, with bucket size chosen by range.

    today: six 3-hour slots (cumulative estimate); 7d: one bucket per day;
    30d: four weekly buckets; all: current month and the three before it.
    """
    return _playtime_trend(store.read(), TimeRange.parse(time_range), store.now())


# Category breakdown


def _category_data(state: StoreState, time_range: TimeRange, now: int) -> dict:
    totals = sum_time_by_map(state, time_range, now)
    ordered = rank_order(totals)
    top = ordered[:TOP_N]

    labels = [_title(state, map_id) or map_id[:LABEL_MAX_LEN] for map_id, _ in top]
    data = [ms_to_minutes(ms) for _, ms in top]

    played = sum(1 for ms in totals.values() if ms > 0)
    if played > TOP_N:
        other_ms = sum(totals.values()) - sum(ms for _, ms in top)
        if other_ms > 0:
            labels.append("Other")
            data.append(ms_to_minutes(other_ms))

    return {"range": time_range.value, "labels": labels, "data": data}


def get_category_data(store: SessionStore, time_range: TimeRange | str) -> dict:
    """Top maps as pseudo-categories, with the rest folded into "Other"."""
    return _category_data(store.read(), TimeRange.parse(time_range), store.now())


# Period comparison


def _period_stats(state: StoreState, start: int, end: int) -> dict:
    """Totals for the half-open window ``[start, end)``."""
    total_ms = 0
    for key, maps in state.daily_totals.items():
        ts = parse_day_key(key)
        if ts is None or ts < start or ts >= end:
            continue
        total_ms += sum(maps.values())

    sessions = sum(1 for s in state.sessions if start <= s.started_at < end)
    total_mins = ms_to_minutes(total_ms)
    return {
        "total": total_mins,
        "sessions": sessions,
        "avg_session": _round_half_up(total_mins / sessions) if sessions else 0,
    }


def _comparison_data(state: StoreState, time_range: TimeRange, now: int) -> dict:
    current = _period_stats(state, range_start(time_range, now), next_day_start(now))

    previous_bounds = previous_period(time_range, now)
    if previous_bounds is None:
        previous = {"total": 0, "sessions": 0, "avg_session": 0}
    else:
        previous = _period_stats(state, *previous_bounds)

    current_label, previous_label = _PERIOD_LABELS[time_range]
    has_previous = previous["total"] > 0

    return {
        "range": time_range.value,
        "current": current,
        "previous": previous,
        "current_label": current_label,
        "previous_label": previous_label,
        "has_previous_data": has_previous,
        "changes": {
            metric: compare_values(current[metric], previous[metric], has_previous)
            for metric in ("total", "sessions", "avg_session")
        },
    }


def get_comparison_data(store: SessionStore, time_range: TimeRange | str) -> dict:
    """Compare the current range against the preceding period of equal length.

    Totals are in minutes. "all" has no previous period: it reports zeros
    labelled "N/A", and changes carry an icon but no percentage.
    """
    return _comparison_data(store.read(), TimeRange.parse(time_range), store.now())


# Recent sessions and top 5


def _recent_sessions(
    state: StoreState, time_range: TimeRange, now: int, limit: int = RECENT_SESSIONS_LIMIT
) -> list[dict]:
    start = range_start(time_range, now)
    in_range = sorted(
        (s for s in state.sessions if s.started_at >= start),
        key=lambda s: s.started_at,
        reverse=True,
    )
    return [
        {
            "map": _title(state, s.map_id) or s.map_id,
            "code": s.map_id,
            "duration": ms_to_minutes(s.duration_ms),
            "time_ago": format_time_ago(s.ended_at, now),
            "started_at": s.started_at,
            "ended_at": s.ended_at,
        }
        for s in in_range[:limit]
    ]


def get_recent_sessions(
    store: SessionStore, time_range: TimeRange | str, limit: int = RECENT_SESSIONS_LIMIT
) -> list[dict]:
    """Most recent completed sessions that started inside the range."""
    return _recent_sessions(store.read(), TimeRange.parse(time_range), store.now(), limit)


def _top5_maps(state: StoreState, time_range: TimeRange, now: int) -> list[dict]:
    ordered = rank_order(sum_time_by_map(state, time_range, now))
    return [
        {"name": _title(state, map_id) or map_id, "code": map_id, "minutes": ms_to_minutes(ms)}
        for map_id, ms in ordered[:TOP_N]
    ]


def get_top5_maps(store: SessionStore, time_range: TimeRange | str) -> list[dict]:
    """The five most played maps in the range."""
    return _top5_maps(store.read(), TimeRange.parse(time_range), store.now())


def get_dashboard_data(store: SessionStore, time_range: TimeRange | str) -> dict:
    """All dashboard views for one range, computed from a single snapshot."""
    time_range = TimeRange.parse(time_range)
    state = store.read()
    now = store.now()
    return {
        "range": time_range.value,
        "playtime_trend": _playtime_trend(state, time_range, now),
        "category_data": _category_data(state, time_range, now),
        "comparison": _comparison_data(state, time_range, now),
        "recent_sessions": _recent_sessions(state, time_range, now),
        "top5_maps": _top5_maps(state, time_range, now),
    }


# Library and overview


def get_library_data(store: SessionStore) -> list[dict]:
    """One row per map ever played, most played first.

    The session log supplies play counts and first/last played times; day
    buckets supply total time. Maps with day buckets but no logged sessions
    (e.g. data from before sessions were recorded) count as one play spanning
    their first and last bucket days.
    """
    state = store.read()
    now = store.now()
    stats: dict[str, dict] = {}

    def entry(map_id: str) -> dict:
        return stats.setdefault(
            map_id,
            {"total_ms": 0, "play_count": 0, "first_played": None, "last_played": None},
        )

    for s in state.sessions:
        row = entry(s.map_id)
        row["play_count"] += 1
        if row["first_played"] is None or s.started_at < row["first_played"]:
            row["first_played"] = s.started_at
        if row["last_played"] is None or s.ended_at > row["last_played"]:
            row["last_played"] = s.ended_at

    bucket_days: dict[str, tuple[int, int]] = {}
    for key, maps in state.daily_totals.items():
        ts = parse_day_key(key)
        if ts is None:
            continue
        for map_id, ms in maps.items():
            entry(map_id)["total_ms"] += ms
            if ms > 0:
                first, last = bucket_days.get(map_id, (ts, ts))
                bucket_days[map_id] = (min(first, ts), max(last, ts))

    for map_id, (first_day, last_day) in bucket_days.items():
        row = stats[map_id]
        if row["play_count"] == 0:
            row["play_count"] = 1
            row["first_played"] = first_day
            row["last_played"] = next_day_start(last_day) - 1

    rows = []
    for map_id, row in stats.items():
        meta = state.maps.get(map_id)
        rows.append(
            {
                "map_id": map_id,
                "title": meta.title if meta else None,
                "thumbnail": meta.thumbnail if meta else None,
                "total_play_time": row["total_ms"],
                "total_play_time_label": format_duration(row["total_ms"]),
                "play_count": max(1, row["play_count"]),
                "first_played": row["first_played"] if row["first_played"] is not None else now,
                "last_played": row["last_played"] if row["last_played"] is not None else now,
            }
        )
    rows.sort(key=lambda r: (-r["total_play_time"], r["map_id"]))
    return rows


def get_overview_stats(store: SessionStore) -> dict:
    """Grand totals: playtime, distinct maps and average session length (ms)."""
    state = store.read()
    total_ms = 0
    maps_played = set()
    for key, maps in state.daily_totals.items():
        if parse_day_key(key) is None:
            continue
        for map_id, ms in maps.items():
            total_ms += ms
            maps_played.add(map_id)

    session_count = len(state.sessions)
    avg_session_ms = _round_half_up(total_ms / session_count) if session_count else 0
    return {
        "total_playtime_ms": total_ms,
        "maps_played": len(maps_played),
        "session_count": session_count,
        "avg_session_ms": avg_session_ms,
        "total_playtime": format_duration(total_ms),
        "avg_session": format_duration(avg_session_ms),
    }


def get_active_session_info(store: SessionStore) -> dict | None:
    """The in-progress session with its live elapsed time, or None when idle."""
    active = store.active_session()
    if active is None:
        return None
    elapsed = store.active_elapsed_ms()
    meta = store.get_metadata(active.map_id)
    return {
        "map_id": active.map_id,
        "title": meta.title if meta else None,
        "started_at": active.started_at,
        "elapsed_ms": elapsed,
        "elapsed": format_duration(elapsed),
    }
