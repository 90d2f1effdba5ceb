"""Playtime Analytics - session tracking and usage analytics for map playtime."""

from importlib.metadata import version

try:
    __version__ = version("playtime-analytics")
except Exception:
    __version__ = "0.1.0"  # Fallback for development

# Re-export public API
from playtime_analytics.backends import MemoryBackend, SQLiteBackend
from playtime_analytics.store import (
    ActiveSession,
    MapMetadata,
    MapSession,
    SessionStore,
    StoreConfig,
    StoreNotReadyError,
    StoreState,
)
from playtime_analytics.timeutils import TimeRange

__all__ = [
    # Version
    "__version__",
    # Backends
    "SQLiteBackend",
    "MemoryBackend",
    # Store
    "SessionStore",
    "StoreConfig",
    "StoreState",
    "StoreNotReadyError",
    "ActiveSession",
    "MapSession",
    "MapMetadata",
    # Time
    "TimeRange",
]
