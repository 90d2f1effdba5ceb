"""MCP Playtime Analytics Server.

Provides tools for tracking and querying map playtime:
- start_session: A tracked map became active
- stop_session: The player left a map (or the tracked area)
- update_map_metadata: Attach a title/thumbnail to a map
- get_top_maps: Ranked maps with 7-day trends
- get_dashboard: Trend, categories, comparison, recent sessions, top 5
- get_library: Every map ever played
- get_overview: Grand totals and the active session
- get_status: Store and database health
"""

import asyncio
import logging
import os

from fastmcp import FastMCP

from playtime_analytics import __version__
from playtime_analytics.backends import SQLiteBackend
from playtime_analytics.messages import MessageType, handle_request
from playtime_analytics.store import MapSession, SessionStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("playtime-analytics")
if os.environ.get("DEV_MODE"):
    logger.setLevel(logging.DEBUG)

# Initialize MCP server
mcp = FastMCP("playtime-analytics")

# Store is opened on first use, inside the server's event loop
_store: SessionStore | None = None
_store_lock = asyncio.Lock()


async def get_store() -> SessionStore:
    """Return the process-wide store, initializing and recovering it once."""
    global _store
    async with _store_lock:
        if _store is None:
            store = SessionStore(SQLiteBackend())
            await store.init()
            recovered = store.recover()
            if recovered:
                logger.info(f"Closed abandoned session on {recovered.map_id} at startup")
            _store = store
    return _store


def _session_dict(session: MapSession | None) -> dict | None:
    if session is None:
        return None
    return {
        "map_id": session.map_id,
        "started_at": session.started_at,
        "ended_at": session.ended_at,
        "duration_ms": session.duration_ms,
    }


@mcp.tool()
async def get_status() -> dict:
    """Get store status and database stats.

    Returns:
        Status info including the active session, record counts and write health
    """
    store = await get_store()
    state = store.read()
    active = state.active_session

    result = {
        "status": "ok",
        "version": __version__,
        "active_map": active.map_id if active else None,
        "session_count": len(state.sessions),
        "days_tracked": len(state.daily_totals),
        "maps_with_metadata": len(state.maps),
        **store.write_stats(),
    }
    if isinstance(store.backend, SQLiteBackend):
        result.update(store.backend.get_db_stats())
    return result


@mcp.tool()
async def start_session(map_id: str, title: str | None = None, thumbnail: str | None = None) -> dict:
    """Start tracking a map. Any session already running is closed first.

    Args:
        map_id: Map code (e.g. "1234-5678-9012")
        title: Optional display title to remember for the map
        thumbnail: Optional thumbnail URL to remember for the map

    Returns:
        The now-active session
    """
    store = await get_store()
    metadata = {"title": title, "thumbnail": thumbnail} if (title or thumbnail) else None
    store.start(map_id, metadata)
    await store.flush()
    active = store.active_session()
    return {"status": "ok", "map_id": active.map_id, "started_at": active.started_at}


@mcp.tool()
async def stop_session(map_id: str | None = None) -> dict:
    """Stop the active session.

    Args:
        map_id: Only stop if this map is the active one (default: stop whatever is active)

    Returns:
        Whether a session was recorded, and the session itself
    """
    store = await get_store()
    session = store.stop_if_active_map_is(map_id) if map_id else store.stop()
    await store.flush()
    return {"status": "ok", "recorded": session is not None, "session": _session_dict(session)}


@mcp.tool()
async def update_map_metadata(
    map_id: str, title: str | None = None, thumbnail: str | None = None
) -> dict:
    """Set display metadata for a map. Omitted fields keep their current values.

    Args:
        map_id: Map code
        title: Display title
        thumbnail: Thumbnail URL

    Returns:
        The merged metadata
    """
    store = await get_store()
    meta = store.update_metadata(map_id, title=title, thumbnail=thumbnail)
    await store.flush()
    return {"map_id": meta.map_id, "title": meta.title, "thumbnail": meta.thumbnail}


@mcp.tool()
async def get_top_maps(range: str = "7d") -> dict:
    """Get maps ranked by time played.

    Args:
        range: 'today', '7d', '30d' or 'all' (default: 7d)

    Returns:
        Ranked maps with 7-day trend arrays, echoing the requested range
    """
    store = await get_store()
    return handle_request(store, MessageType.TOP_MAPS_REQUEST, {"range": range})["data"]


@mcp.tool()
async def get_dashboard(range: str = "7d") -> dict:
    """Get all dashboard views for a time range.

    Args:
        range: 'today', '7d', '30d' or 'all' (default: 7d)

    Returns:
        Playtime trend, category breakdown, period comparison, recent sessions and top 5
    """
    store = await get_store()
    return handle_request(store, MessageType.DASHBOARD_REQUEST, {"range": range})["data"]


@mcp.tool()
async def get_library() -> dict:
    """Get every map ever played with totals and first/last played times."""
    store = await get_store()
    return handle_request(store, MessageType.LIBRARY_REQUEST)["data"]


@mcp.tool()
async def get_overview() -> dict:
    """Get total playtime, distinct maps, average session and the active session."""
    store = await get_store()
    return handle_request(store, MessageType.OVERVIEW_REQUEST)["data"]


def create_app():
    """Create the ASGI app for uvicorn."""
    # stateless_http=True allows resilience to server restarts
    return mcp.http_app(stateless_http=True)


def main():
    """Run the MCP server."""
    import uvicorn

    port = int(os.environ.get("PORT", 8082))
    host = os.environ.get("HOST", "127.0.0.1")

    print(f"Starting Playtime Analytics on {host}:{port}")
    print(f"MCP endpoint: http://{host}:{port}/mcp")

    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
