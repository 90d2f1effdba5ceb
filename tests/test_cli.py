"""Tests for the CLI module."""

import asyncio
import json

import pytest
from conftest import FakeClock

from playtime_analytics.backends import SQLiteBackend
from playtime_analytics.cli import format_output, main
from playtime_analytics.store import SessionStore
from playtime_analytics.timeutils import MS_PER_HOUR, MS_PER_MINUTE, now_ms


def seed(db_path, sessions=(), active=None):
    """Write sessions (map_id, started_at, ended_at) and an optional active session."""

    async def run():
        clock = FakeClock(0)
        store = SessionStore(SQLiteBackend(db_path), clock=clock)
        await store.init()
        for map_id, started_at, ended_at in sessions:
            clock.set(started_at)
            store.start(map_id)
            clock.set(ended_at)
            store.stop()
        if active:
            clock.set(active[1])
            store.start(active[0])
        await store.close()

    asyncio.run(run())


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the CLI at a temporary database."""
    path = tmp_path / "cli.db"
    monkeypatch.setenv("PLAYTIME_ANALYTICS_DB", str(path))
    return path


@pytest.fixture
def seeded_db(db_path):
    """Database with one 30-minute session on m1 an hour ago."""
    now = now_ms()
    seed(db_path, [("m1", now - 90 * MS_PER_MINUTE, now - 60 * MS_PER_MINUTE)])
    return db_path


def run_json(capsys, *argv):
    main(["--json", *argv])
    return json.loads(capsys.readouterr().out)


class TestFormatOutput:
    """Tests for output formatting."""

    def test_json_output(self):
        """Test JSON formatting."""
        data = {"key": "value", "number": 42}
        result = format_output(data, json_output=True)
        assert json.loads(result) == data

    def test_unknown_data_falls_back_to_json(self):
        """Test that unmatched dicts are printed as JSON."""
        result = format_output({"something": "else"})
        assert json.loads(result) == {"something": "else"}

    def test_top_maps_format(self):
        """Test the ranked table."""
        data = {
            "range": "7d",
            "maps": [
                {
                    "rank": 1,
                    "map_id": "m1",
                    "title": "Box Fights",
                    "time_played": "1h 5m",
                    "trend_direction": "up",
                    "trend_label": "NEW",
                    "play_count": 2,
                }
            ],
        }
        result = format_output(data)
        assert "Top maps (Last 7 Days):" in result
        assert "1. Box Fights: 1h 5m ↑ NEW (2 days)" in result

    def test_top_maps_empty(self):
        """Test the empty ranking message."""
        assert "(no playtime recorded)" in format_output({"range": "today", "maps": []})

    def test_overview_format(self):
        """Test the overview summary."""
        data = {
            "total_playtime_ms": 5_400_000,
            "total_playtime": "1h 30m",
            "maps_played": 2,
            "session_count": 3,
            "avg_session": "30m",
            "active_session": {"map_id": "m1", "title": None, "elapsed": "5m"},
        }
        result = format_output(data)
        assert "Total playtime: 1h 30m" in result
        assert "Now playing: m1 (5m)" in result


class TestCommands:
    """Tests for CLI commands against a real database."""

    def test_top(self, seeded_db, capsys):
        """Test the top command."""
        data = run_json(capsys, "top", "--range", "7d")
        assert data["range"] == "7d"
        assert data["maps"][0]["map_id"] == "m1"
        assert data["maps"][0]["time_played"] == "30m"

    def test_top_human(self, seeded_db, capsys):
        """Test human-readable top output."""
        main(["top"])
        out = capsys.readouterr().out
        assert "Top maps (Last 7 Days):" in out
        assert "m1: 30m" in out

    def test_status(self, seeded_db, capsys):
        """Test the status command."""
        data = run_json(capsys, "status")
        assert data["session_count"] == 1
        assert data["active_map"] is None
        assert data["key_count"] == 1
        assert data["db_path"] == str(seeded_db)

    def test_start_and_stop_other_map(self, db_path, capsys):
        """Test that start persists across invocations."""
        main(["start", "m9", "--title", "Nine"])
        assert "Tracking m9" in capsys.readouterr().out

        assert run_json(capsys, "status")["active_map"] == "m9"

        main(["stop", "--map-id", "other"])
        assert "No session recorded" in capsys.readouterr().out
        assert run_json(capsys, "status")["active_map"] == "m9"

    def test_recover_closes_stale_session(self, db_path, capsys):
        """Test that an abandoned session is closed and credited."""
        seed(db_path, active=("m2", now_ms() - 10 * MS_PER_HOUR))

        assert run_json(capsys, "recover")["active_session"] is None
        library = run_json(capsys, "library")
        assert library["maps"][0]["map_id"] == "m2"
        assert library["maps"][0]["total_play_time"] >= 10 * MS_PER_HOUR

    def test_reset_requires_confirmation(self, seeded_db, capsys):
        """Test that reset needs --yes."""
        main(["reset"])
        assert "Refusing" in capsys.readouterr().out
        assert run_json(capsys, "overview")["session_count"] == 1

        assert run_json(capsys, "reset", "--yes")["status"] == "reset"
        assert run_json(capsys, "overview")["session_count"] == 0

    def test_dashboard_human(self, seeded_db, capsys):
        """Test human-readable dashboard output."""
        main(["dashboard", "--range", "30d"])
        out = capsys.readouterr().out
        assert "Dashboard (Last 30 Days)" in out
        assert "Top 5:" in out
        assert "m1: 30m" in out

    def test_invalid_range_rejected(self, db_path):
        """Test that argparse rejects unknown ranges."""
        with pytest.raises(SystemExit):
            main(["top", "--range", "1y"])
