"""Tests for the top-maps ranking."""

from datetime import datetime

from conftest import ms

from playtime_analytics.ranking import (
    TREND_DAYS,
    aggregate_sessions,
    get_session_rankings,
    get_top_maps,
    rank_order,
    sum_time_by_map,
)
from playtime_analytics.store import MapSession
from playtime_analytics.timeutils import MS_PER_MINUTE
from playtime_analytics.trends import TrendPolicy


class TestRankOrder:
    """Tests for the ordering rule."""

    def test_descending_time(self):
        """Test that more time ranks higher."""
        assert rank_order({"a": 1, "b": 3, "c": 2}) == [("b", 3), ("c", 2), ("a", 1)]

    def test_tie_broken_by_map_id(self):
        """Test that equal totals fall back to map id order."""
        assert rank_order({"zeta": 5, "alpha": 5}) == [("alpha", 5), ("zeta", 5)]


class TestGetTopMaps:
    """Tests for get_top_maps."""

    async def test_empty_store(self, store):
        """Test that no data gives no rows."""
        assert get_top_maps(store, "7d") == []

    async def test_ranked_by_time(self, store, play):
        """Test ranking, formatting and play counts."""
        play("m1", datetime(2025, 6, 17, 10), minutes=30)
        play("m2", datetime(2025, 6, 18, 9), minutes=65)
        play("m1", datetime(2025, 6, 18, 11), minutes=10)

        rows = get_top_maps(store, "7d")
        assert [(r.rank, r.map_id) for r in rows] == [(1, "m2"), (2, "m1")]
        assert rows[0].time_played_ms == 65 * MS_PER_MINUTE
        assert rows[0].time_played == "1h 5m"
        assert rows[1].play_count == 2
        assert rows[1].last_played == "2025-06-18"

    async def test_tie_break(self, store, play):
        """Test that equal totals rank by map id."""
        play("b-map", datetime(2025, 6, 18, 9), minutes=30)
        play("a-map", datetime(2025, 6, 18, 10), minutes=30)
        assert [r.map_id for r in get_top_maps(store, "today")] == ["a-map", "b-map"]

    async def test_range_filtering(self, store, play):
        """Test that a map played 8 days ago only shows in wider ranges."""
        play("old", datetime(2025, 6, 10, 12), minutes=40)
        play("new", datetime(2025, 6, 18, 9), minutes=5)

        assert [r.map_id for r in get_top_maps(store, "today")] == ["new"]
        assert [r.map_id for r in get_top_maps(store, "7d")] == ["new"]
        assert [r.map_id for r in get_top_maps(store, "30d")] == ["old", "new"]
        assert [r.map_id for r in get_top_maps(store, "all")] == ["old", "new"]

    async def test_trend_covers_last_seven_days(self, store, play):
        """Test that trend arrays ignore the selected range."""
        play("old", datetime(2025, 6, 10, 12), minutes=40)
        play("m1", datetime(2025, 6, 12, 12), minutes=10)
        play("m1", datetime(2025, 6, 18, 9), minutes=20)

        rows = {r.map_id: r for r in get_top_maps(store, "30d")}
        assert rows["old"].trend == [0] * TREND_DAYS
        assert rows["old"].trend_direction == "flat"
        assert rows["old"].trend_label == "—"

        trend = rows["m1"].trend
        assert len(trend) == TREND_DAYS
        assert trend[0] == 10 * MS_PER_MINUTE
        assert trend[-1] == 20 * MS_PER_MINUTE
        assert rows["m1"].trend_direction == "up"
        assert rows["m1"].trend_label == "+100%"

    async def test_absolute_deadzone(self, store, play):
        """Test that a sub-2-minute rise is flat in the ranking view."""
        play("m1", datetime(2025, 6, 18, 9), minutes=1.5)
        row = get_top_maps(store, "7d")[0]
        assert row.trend_direction == "flat"
        assert row.trend_label == "NEW"
        assert get_top_maps(store, "7d", policy=TrendPolicy.PERCENT)[0].trend_direction == "up"

    async def test_metadata_resolution(self, store, play):
        """Test that the resolver wins over stored metadata, field by field."""
        play("m1", datetime(2025, 6, 18, 9), minutes=5, metadata={"title": "Stored", "thumbnail": "t.png"})
        play("m2", datetime(2025, 6, 18, 10), minutes=3)

        def resolver(map_id):
            return {"title": "Live"} if map_id == "m1" else None

        rows = {r.map_id: r for r in get_top_maps(store, "7d", resolve_meta=resolver)}
        assert rows["m1"].title == "Live"
        assert rows["m1"].thumbnail == "t.png"
        assert rows["m2"].title is None

    async def test_row_dict(self, store, play):
        """Test the JSON-ready row shape."""
        play("m1", datetime(2025, 6, 18, 9), minutes=5)
        row = get_top_maps(store, "7d")[0].to_dict()
        assert set(row) == {
            "rank",
            "map_id",
            "title",
            "thumbnail",
            "time_played_ms",
            "time_played",
            "trend",
            "trend_direction",
            "trend_label",
            "play_count",
            "last_played",
        }

    async def test_malformed_day_keys_skipped(self, store, play):
        """Test that unparseable day keys never reach the ranking."""
        play("m1", datetime(2025, 6, 18, 9), minutes=5)
        state = store.read()
        state.daily_totals["bogus"] = {"ghost": 10 * MS_PER_MINUTE}
        assert sum_time_by_map(state, "all", store.now()) == {"m1": 5 * MS_PER_MINUTE}


class TestSessionRankings:
    """Tests for the session-log aggregation path."""

    def test_partial_overlap(self):
        """Test that sessions only count the part inside the window."""
        now = ms(2025, 6, 18, 14)
        sessions = [
            MapSession("m1", ms(2025, 6, 17, 23, 30), ms(2025, 6, 18, 0, 30)),
            MapSession("m1", ms(2025, 6, 18, 9), ms(2025, 6, 18, 9, 10)),
            MapSession("m2", ms(2025, 6, 16, 9), ms(2025, 6, 16, 10)),
        ]
        aggs = {a.map_id: a for a in aggregate_sessions(sessions, ms(2025, 6, 18), now, now)}

        assert set(aggs) == {"m1"}
        assert aggs["m1"].total_ms == 40 * MS_PER_MINUTE
        assert aggs["m1"].play_count == 2
        assert aggs["m1"].trend_daily_ms7[-2] == 30 * MS_PER_MINUTE
        assert aggs["m1"].trend_daily_ms7[-1] == 40 * MS_PER_MINUTE

    async def test_counts_sessions(self, store, play):
        """Test that play_count is the number of sessions."""
        play("m1", datetime(2025, 6, 18, 9), minutes=5)
        play("m1", datetime(2025, 6, 18, 10), minutes=5)
        play("m2", datetime(2025, 6, 18, 11), minutes=20)

        rows = get_session_rankings(store, "today")
        assert [r.map_id for r in rows] == ["m2", "m1"]
        assert rows[1].play_count == 2
        assert rows[0].trend_label == "NEW"
        assert rows[0].trend_direction == "up"
