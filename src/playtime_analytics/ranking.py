"""Top-maps ranking with 7-day momentum trends."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Callable, Iterable, Mapping

from playtime_analytics.store import MapSession, SessionStore, StoreState
from playtime_analytics.timeutils import (
    TimeRange,
    build_daily_starts,
    day_key,
    format_hours_minutes,
    last_n_days_keys,
    next_day_start,
    parse_day_key,
    range_start,
)
from playtime_analytics.trends import TrendPolicy, classify_trend

# Trend arrays always cover the last 7 calendar days, whatever the selected range
TREND_DAYS = 7

MetaResolver = Callable[[str], "Mapping[str, str | None] | None"]


@dataclass
class MapAgg:
    """Per-map rollup over a query range."""

    map_id: str
    total_ms: int = 0
    # Days played (day-bucket aggregation) or sessions (session-log aggregation)
    play_count: int = 0
    trend_daily_ms7: list[int] = field(default_factory=lambda: [0] * TREND_DAYS)
    last_played: str | None = None  # day key


@dataclass
class RankedRow:
    """One row of the ranked top-maps table."""

    rank: int
    map_id: str
    title: str | None
    thumbnail: str | None
    time_played_ms: int
    time_played: str
    trend: list[int]
    trend_direction: str
    trend_label: str
    play_count: int
    last_played: str | None

    def to_dict(self) -> dict:
        return asdict(self)


def rank_order(totals: Mapping[str, int]) -> list[tuple[str, int]]:
    """(map_id, ms) pairs by descending time; ties broken by map_id ascending."""
    return sorted(totals.items(), key=lambda item: (-item[1], item[0]))


def sum_time_by_map(state: StoreState, time_range: TimeRange | str, now: int) -> dict[str, int]:
    """Total milliseconds per map across day buckets inside the range.

    Day keys that do not parse as dates are skipped.
    """
    start = range_start(time_range, now)
    totals: dict[str, int] = {}
    for key, maps in state.daily_totals.items():
        ts = parse_day_key(key)
        if ts is None or ts < start:
            continue
        for map_id, ms in maps.items():
            totals[map_id] = totals.get(map_id, 0) + ms
    return totals


def aggregate_daily_totals(
    state: StoreState, time_range: TimeRange | str, now: int
) -> list[MapAgg]:
    """Roll day buckets up into one MapAgg per map seen inside the range."""
    start = range_start(time_range, now)
    by_map: dict[str, MapAgg] = {}
    last_played_ts: dict[str, int] = {}

    for key, maps in state.daily_totals.items():
        ts = parse_day_key(key)
        if ts is None or ts < start:
            continue
        for map_id, ms in maps.items():
            agg = by_map.get(map_id)
            if agg is None:
                agg = by_map[map_id] = MapAgg(map_id=map_id)
            agg.total_ms += ms
            if ms > 0:
                agg.play_count += 1
                if ts > last_played_ts.get(map_id, -1):
                    last_played_ts[map_id] = ts
                    agg.last_played = key

    trend_keys = last_n_days_keys(TREND_DAYS, now)
    for agg in by_map.values():
        agg.trend_daily_ms7 = [
            state.daily_totals.get(key, {}).get(agg.map_id, 0) for key in trend_keys
        ]

    return list(by_map.values())


def _resolve_meta(
    state: StoreState, map_id: str, resolve_meta: MetaResolver | None
) -> tuple[str | None, str | None]:
    """Title and thumbnail: external resolver first, then stored metadata."""
    external = (resolve_meta(map_id) if resolve_meta else None) or {}
    stored = state.maps.get(map_id)
    title = external.get("title") or (stored.title if stored else None)
    thumbnail = external.get("thumbnail") or (stored.thumbnail if stored else None)
    return title, thumbnail


def to_top_rows(
    aggs: Iterable[MapAgg],
    state: StoreState,
    resolve_meta: MetaResolver | None = None,
    policy: TrendPolicy = TrendPolicy.ABSOLUTE,
) -> list[RankedRow]:
    """Sort aggregates by time played and attach rank, trend and metadata."""
    ordered = sorted(aggs, key=lambda a: (-a.total_ms, a.map_id))

    rows = []
    for rank, agg in enumerate(ordered, start=1):
        title, thumbnail = _resolve_meta(state, agg.map_id, resolve_meta)
        trend = classify_trend(agg.trend_daily_ms7, policy)
        rows.append(
            RankedRow(
                rank=rank,
                map_id=agg.map_id,
                title=title,
                thumbnail=thumbnail,
                time_played_ms=agg.total_ms,
                time_played=format_hours_minutes(agg.total_ms),
                trend=list(agg.trend_daily_ms7),
                trend_direction=trend.direction,
                trend_label=trend.label,
                play_count=agg.play_count,
                last_played=agg.last_played,
            )
        )
    return rows


def get_top_maps(
    store: SessionStore,
    time_range: TimeRange | str,
    resolve_meta: MetaResolver | None = None,
    policy: TrendPolicy = TrendPolicy.ABSOLUTE,
) -> list[RankedRow]:
    """Rank every map played in the range by total time.

    Args:
        store: Initialized session store
        time_range: 'today', '7d', '30d' or 'all'
        resolve_meta: Optional lookup returning {'title', 'thumbnail'} for a map id
        policy: Trend deadzone convention (absolute 2 minutes by default)

    Returns:
        Ranked rows, rank 1 first
    """
    state = store.read()
    now = store.now()
    return to_top_rows(aggregate_daily_totals(state, time_range, now), state, resolve_meta, policy)


# Session-log aggregation (per-map detail view)


def _overlap_ms(session: MapSession, start: int, end: int) -> int:
    return max(0, min(session.ended_at, end) - max(session.started_at, start))


def aggregate_sessions(
    sessions: Iterable[MapSession], start: int, end: int, now: int
) -> list[MapAgg]:
    """Aggregate completed sessions overlapping ``[start, end)``.

    Unlike the day-bucket path this counts real sessions, and a session only
    partially inside the window contributes just its overlap.
    """
    daily_starts = build_daily_starts(TREND_DAYS, now)
    day_ends = daily_starts[1:] + [min(now, next_day_start(daily_starts[-1]))]
    by_map: dict[str, MapAgg] = {}
    last_ended: dict[str, int] = {}

    for s in sessions:
        played = _overlap_ms(s, start, end)
        if played <= 0:
            continue

        agg = by_map.get(s.map_id)
        if agg is None:
            agg = by_map[s.map_id] = MapAgg(map_id=s.map_id)
        agg.total_ms += played
        agg.play_count += 1
        if s.ended_at > last_ended.get(s.map_id, -1):
            last_ended[s.map_id] = s.ended_at
            agg.last_played = day_key(s.ended_at)

        for idx, (day_start, day_end) in enumerate(zip(daily_starts, day_ends)):
            part = _overlap_ms(s, day_start, day_end)
            if part > 0:
                agg.trend_daily_ms7[idx] += part

    return list(by_map.values())


def get_session_rankings(
    store: SessionStore,
    time_range: TimeRange | str,
    resolve_meta: MetaResolver | None = None,
    policy: TrendPolicy = TrendPolicy.PERCENT,
) -> list[RankedRow]:
    """Rank maps from the session log, counting true sessions per map."""
    state = store.read()
    now = store.now()
    aggs = aggregate_sessions(state.sessions, range_start(time_range, now), now, now)
    return to_top_rows(aggs, state, resolve_meta, policy)
