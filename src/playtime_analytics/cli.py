"""Command-line interface for playtime analytics."""

import argparse
import asyncio
import json
from datetime import datetime

from playtime_analytics.backends import SQLiteBackend
from playtime_analytics.dashboard import get_active_session_info
from playtime_analytics.messages import MessageType, handle_request
from playtime_analytics.store import SessionStore
from playtime_analytics.timeutils import (
    TimeRange,
    format_duration,
    format_minutes,
    from_ms,
    get_time_range_label,
)

# Formatter registry: list of (predicate, formatter) tuples
# Each predicate checks if this formatter can handle the data
# Order matters - first match wins
_FORMATTERS: list[tuple[callable, callable]] = []


def _register_formatter(predicate: callable):
    """Decorator to register a formatter with its predicate."""

    def decorator(formatter: callable):
        _FORMATTERS.append((predicate, formatter))
        return formatter

    return decorator


def _fmt_ts(ts: int | None) -> str:
    if ts is None:
        return "never"
    return from_ms(ts).strftime("%Y-%m-%d %H:%M")


@_register_formatter(lambda d: "maps" in d and "range" in d)
def _format_top_maps(data: dict) -> list[str]:
    lines = [f"Top maps ({get_time_range_label(data['range'])}):"]
    if not data["maps"]:
        lines.append("  (no playtime recorded)")
    arrows = {"up": "↑", "down": "↓", "flat": "→"}
    for row in data["maps"][:20]:
        name = row.get("title") or row["map_id"]
        arrow = arrows[row["trend_direction"]]
        lines.append(
            f"  {row['rank']:>2}. {name}: {row['time_played']} "
            f"{arrow} {row['trend_label']} ({row['play_count']} days)"
        )
    return lines


@_register_formatter(lambda d: "maps" in d)
def _format_library(data: dict) -> list[str]:
    lines = [f"Library: {len(data['maps'])} maps", ""]
    for row in data["maps"][:50]:
        name = row.get("title") or row["map_id"]
        lines.append(
            f"  {name}: {row['total_play_time_label']} over {row['play_count']} plays "
            f"(last {_fmt_ts(row['last_played'])})"
        )
    return lines


@_register_formatter(lambda d: "playtime_trend" in d)
def _format_dashboard(data: dict) -> list[str]:
    lines = [f"Dashboard ({get_time_range_label(data['range'])})", "", "Playtime:"]
    trend = data["playtime_trend"]
    for label, mins in zip(trend["labels"], trend["data"]):
        lines.append(f"  {label:>7}: {format_minutes(mins)}")

    comparison = data["comparison"]
    lines.append("")
    if comparison["has_previous_data"]:
        lines.append(f"{comparison['current_label']} vs {comparison['previous_label']}:")
    else:
        lines.append(f"{comparison['current_label']}:")
    for metric, label in (("total", "Total"), ("sessions", "Sessions"), ("avg_session", "Avg")):
        change = comparison["changes"][metric]
        current = comparison["current"][metric]
        value = current if metric == "sessions" else format_minutes(current)
        pct = f" {change['change_pct']}%" if change["change_pct"] is not None else ""
        lines.append(f"  {label}: {value} {change['icon']}{pct}")

    lines.append("")
    lines.append("Top 5:")
    for entry in data["top5_maps"]:
        lines.append(f"  {entry['name']}: {format_minutes(entry['minutes'])}")

    lines.append("")
    lines.append("Recent sessions:")
    for session in data["recent_sessions"]:
        lines.append(f"  {session['map']}: {format_minutes(session['duration'])} ({session['time_ago']})")
    return lines


@_register_formatter(lambda d: "total_playtime_ms" in d)
def _format_overview(data: dict) -> list[str]:
    lines = [
        f"Total playtime: {data['total_playtime']}",
        f"Maps played: {data['maps_played']}",
        f"Sessions: {data['session_count']}",
        f"Average session: {data['avg_session']}",
    ]
    active = data.get("active_session")
    if active:
        lines.append(f"Now playing: {active.get('title') or active['map_id']} ({active['elapsed']})")
    return lines


@_register_formatter(lambda d: "recorded" in d)
def _format_stop(data: dict) -> list[str]:
    session = data.get("session")
    if not session:
        return ["No session recorded"]
    return [f"Recorded {session['map_id']}: {format_duration(session['duration_ms'])}"]


@_register_formatter(lambda d: "started_at" in d and "map_id" in d)
def _format_start(data: dict) -> list[str]:
    return [f"Tracking {data['map_id']} since {_fmt_ts(data['started_at'])}"]


@_register_formatter(lambda d: "session_count" in d and "writes_completed" in d)
def _format_status(data: dict) -> list[str]:
    lines = [
        f"Database: {data.get('db_path', 'unknown')}",
        f"Size: {data.get('db_size_bytes', 0) / 1024:.1f} KB",
        f"Sessions: {data['session_count']}",
        f"Days tracked: {data['days_tracked']}",
        f"Active map: {data.get('active_map') or 'none'}",
    ]
    if data.get("degraded"):
        lines.append("WARNING: running in memory-only mode")
    return lines


def format_output(data: dict, json_output: bool = False) -> str:
    """Format output as JSON or human-readable."""
    if json_output:
        return json.dumps(data, indent=2, default=str)

    # Find matching formatter from registry
    for predicate, formatter in _FORMATTERS:
        if predicate(data):
            return "\n".join(formatter(data))

    # Fallback to JSON if no formatter matches
    return json.dumps(data, indent=2, default=str)


def _with_store(action: callable):
    """Open the store, run recovery, apply ``action(store)`` and flush on exit."""

    async def runner():
        store = SessionStore(SQLiteBackend())
        await store.init()
        try:
            store.recover()
            return action(store)
        finally:
            await store.close()

    return asyncio.run(runner())


def _session_result(session) -> dict:
    if session is None:
        return {"recorded": False, "session": None}
    return {
        "recorded": True,
        "session": {
            "map_id": session.map_id,
            "started_at": session.started_at,
            "ended_at": session.ended_at,
            "duration_ms": session.duration_ms,
        },
    }


def cmd_status(args):
    """Show store status."""

    def action(store: SessionStore) -> dict:
        state = store.read()
        active = state.active_session
        return {
            "active_map": active.map_id if active else None,
            "session_count": len(state.sessions),
            "days_tracked": len(state.daily_totals),
            **store.write_stats(),
            **store.backend.get_db_stats(),
        }

    print(format_output(_with_store(action), args.json))


def cmd_start(args):
    """Start tracking a map."""

    def action(store: SessionStore) -> dict:
        metadata = {"title": args.title, "thumbnail": args.thumbnail} if args.title or args.thumbnail else None
        store.start(args.map_id, metadata)
        active = store.active_session()
        return {"map_id": active.map_id, "started_at": active.started_at}

    print(format_output(_with_store(action), args.json))


def cmd_stop(args):
    """Stop the active session."""

    def action(store: SessionStore) -> dict:
        session = store.stop_if_active_map_is(args.map_id) if args.map_id else store.stop()
        return _session_result(session)

    print(format_output(_with_store(action), args.json))


def cmd_recover(args):
    """Close an abandoned session left by an unclean shutdown."""
    # _with_store already runs recovery; report whatever remains active
    result = _with_store(lambda store: {"active_session": get_active_session_info(store)})
    print(format_output(result, args.json))


def cmd_top(args):
    """Show ranked maps."""
    result = _with_store(
        lambda store: handle_request(store, MessageType.TOP_MAPS_REQUEST, {"range": args.range})
    )
    print(format_output(result["data"], args.json))


def cmd_dashboard(args):
    """Show dashboard views."""
    result = _with_store(
        lambda store: handle_request(store, MessageType.DASHBOARD_REQUEST, {"range": args.range})
    )
    print(format_output(result["data"], args.json))


def cmd_library(args):
    """Show every map ever played."""
    result = _with_store(lambda store: handle_request(store, MessageType.LIBRARY_REQUEST))
    print(format_output(result["data"], args.json))


def cmd_overview(args):
    """Show overview stats."""
    result = _with_store(lambda store: handle_request(store, MessageType.OVERVIEW_REQUEST))
    print(format_output(result["data"], args.json))


def cmd_reset(args):
    """Erase all playtime history."""
    if not args.yes:
        print("Refusing to reset without --yes")
        return

    def action(store: SessionStore) -> dict:
        store.reset()
        return {"status": "reset", "at": datetime.now().isoformat()}

    print(format_output(_with_store(action), args.json))


def main(argv: list[str] | None = None):
    """CLI entry point."""
    epilog = """
Examples:
  playtime-analytics-cli start 1234-5678-9012 --title "Box Fights"
  playtime-analytics-cli stop
  playtime-analytics-cli top --range 30d     # Ranked maps, last 30 days
  playtime-analytics-cli dashboard --range today
  playtime-analytics-cli library

All commands support --json for machine-readable output.
Data location: ~/.playtime-analytics/data.db (override with PLAYTIME_ANALYTICS_DB)
"""
    ranges = [r.value for r in TimeRange]
    parser = argparse.ArgumentParser(
        description="Playtime Analytics CLI - Track and rank time spent per map",
        prog="playtime-analytics-cli",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # status
    sub = subparsers.add_parser("status", help="Show store status")
    sub.set_defaults(func=cmd_status)

    # start
    sub = subparsers.add_parser("start", help="Start tracking a map")
    sub.add_argument("map_id", help="Map code")
    sub.add_argument("--title", help="Display title to remember")
    sub.add_argument("--thumbnail", help="Thumbnail URL to remember")
    sub.set_defaults(func=cmd_start)

    # stop
    sub = subparsers.add_parser("stop", help="Stop the active session")
    sub.add_argument("--map-id", help="Only stop if this map is active")
    sub.set_defaults(func=cmd_stop)

    # recover
    sub = subparsers.add_parser("recover", help="Close an abandoned session")
    sub.set_defaults(func=cmd_recover)

    # top
    sub = subparsers.add_parser("top", help="Show maps ranked by time played")
    sub.add_argument("--range", choices=ranges, default="7d", help="Time range (default: 7d)")
    sub.set_defaults(func=cmd_top)

    # dashboard
    sub = subparsers.add_parser("dashboard", help="Show dashboard views")
    sub.add_argument("--range", choices=ranges, default="7d", help="Time range (default: 7d)")
    sub.set_defaults(func=cmd_dashboard)

    # library
    sub = subparsers.add_parser("library", help="Show every map ever played")
    sub.set_defaults(func=cmd_library)

    # overview
    sub = subparsers.add_parser("overview", help="Show overview stats")
    sub.set_defaults(func=cmd_overview)

    # reset
    sub = subparsers.add_parser("reset", help="Erase all playtime history")
    sub.add_argument("--yes", action="store_true", help="Confirm the reset")
    sub.set_defaults(func=cmd_reset)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
