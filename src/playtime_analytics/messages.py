"""Request/response payloads exchanged between the background process and UI windows.

Range-parameterised responses echo the requested ``range`` so a consumer can
drop a stale response that lost a race against a newer request.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

from playtime_analytics.dashboard import (
    get_active_session_info,
    get_dashboard_data,
    get_library_data,
    get_overview_stats,
)
from playtime_analytics.ranking import get_top_maps
from playtime_analytics.store import SessionStore
from playtime_analytics.timeutils import TimeRange

DEFAULT_RANGE = TimeRange.LAST_7_DAYS


class MessageType(str, Enum):
    """Message types that travel between windows."""

    TOP_MAPS_REQUEST = "top-maps-request"
    TOP_MAPS_UPDATED = "top-maps-updated"
    DASHBOARD_REQUEST = "dashboard-request"
    DASHBOARD_UPDATED = "dashboard-updated"
    LIBRARY_REQUEST = "library-request"
    LIBRARY_UPDATED = "library-updated"
    OVERVIEW_REQUEST = "overview-request"
    OVERVIEW_UPDATED = "overview-updated"


Handler = Callable[[SessionStore, dict], dict]

# Request type -> (response type, handler)
_HANDLERS: dict[MessageType, tuple[MessageType, Handler]] = {}


def _handles(request: MessageType, response: MessageType):
    """Decorator to register the handler answering a request type."""

    def decorator(handler: Handler):
        _HANDLERS[request] = (response, handler)
        return handler

    return decorator


def _requested_range(data: dict) -> TimeRange:
    return TimeRange.parse(data.get("range") or DEFAULT_RANGE)


@_handles(MessageType.TOP_MAPS_REQUEST, MessageType.TOP_MAPS_UPDATED)
def _top_maps(store: SessionStore, data: dict) -> dict:
    time_range = _requested_range(data)
    rows = get_top_maps(store, time_range)
    return {"range": time_range.value, "maps": [row.to_dict() for row in rows]}


@_handles(MessageType.DASHBOARD_REQUEST, MessageType.DASHBOARD_UPDATED)
def _dashboard(store: SessionStore, data: dict) -> dict:
    return get_dashboard_data(store, _requested_range(data))


@_handles(MessageType.LIBRARY_REQUEST, MessageType.LIBRARY_UPDATED)
def _library(store: SessionStore, data: dict) -> dict:
    return {"maps": get_library_data(store)}


@_handles(MessageType.OVERVIEW_REQUEST, MessageType.OVERVIEW_UPDATED)
def _overview(store: SessionStore, data: dict) -> dict:
    return {**get_overview_stats(store), "active_session": get_active_session_info(store)}


def handle_request(
    store: SessionStore, message_type: MessageType | str, data: dict | None = None
) -> dict:
    """Answer a request message.

    Args:
        store: Initialized session store
        message_type: A ``*-request`` message type
        data: Request payload, e.g. {"range": "30d"}

    Returns:
        Response payload {"type", "data", "timestamp"}

    Raises:
        ValueError: Unknown or non-request message type, or invalid range
    """
    message_type = MessageType(message_type)
    if message_type not in _HANDLERS:
        raise ValueError(f"{message_type.value} is not a request message")

    response_type, handler = _HANDLERS[message_type]
    return {
        "type": response_type.value,
        "data": handler(store, data or {}),
        "timestamp": store.now(),
    }
