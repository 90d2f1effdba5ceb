"""Tests for request/response message handling."""

from datetime import datetime

import pytest

from playtime_analytics.messages import MessageType, handle_request


class TestHandleRequest:
    """Tests for handle_request."""

    async def test_top_maps_echoes_range(self, store, play):
        """Test that responses carry the requested range."""
        play("m1", datetime(2025, 6, 10, 9), minutes=10)

        response = handle_request(store, MessageType.TOP_MAPS_REQUEST, {"range": "30d"})
        assert response["type"] == "top-maps-updated"
        assert response["data"]["range"] == "30d"
        assert [row["map_id"] for row in response["data"]["maps"]] == ["m1"]
        assert response["timestamp"] == store.now()

        response = handle_request(store, "top-maps-request", {"range": "7d"})
        assert response["data"] == {"range": "7d", "maps": []}

    async def test_default_range(self, store):
        """Test that a missing range defaults to 7d."""
        response = handle_request(store, MessageType.DASHBOARD_REQUEST)
        assert response["type"] == "dashboard-updated"
        assert response["data"]["range"] == "7d"

    async def test_dashboard_range(self, store):
        """Test that the dashboard echoes its range."""
        response = handle_request(store, MessageType.DASHBOARD_REQUEST, {"range": "today"})
        assert response["data"]["range"] == "today"
        assert response["data"]["playtime_trend"]["range"] == "today"

    async def test_library_and_overview(self, store, play, clock):
        """Test the range-less requests."""
        play("m1", datetime(2025, 6, 18, 9), minutes=10)
        store.start("m2")
        clock.advance(2)

        library = handle_request(store, MessageType.LIBRARY_REQUEST)
        assert library["type"] == "library-updated"
        assert [row["map_id"] for row in library["data"]["maps"]] == ["m1"]

        overview = handle_request(store, MessageType.OVERVIEW_REQUEST)
        assert overview["type"] == "overview-updated"
        assert overview["data"]["session_count"] == 1
        assert overview["data"]["active_session"]["map_id"] == "m2"
        assert overview["data"]["active_session"]["elapsed"] == "2m"

    async def test_invalid_range(self, store):
        """Test that an invalid range raises ValueError."""
        with pytest.raises(ValueError):
            handle_request(store, MessageType.TOP_MAPS_REQUEST, {"range": "90d"})

    async def test_response_type_rejected(self, store):
        """Test that only request types are answered."""
        with pytest.raises(ValueError, match="not a request"):
            handle_request(store, MessageType.TOP_MAPS_UPDATED)
        with pytest.raises(ValueError):
            handle_request(store, "bogus-request")
