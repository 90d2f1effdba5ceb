"""Key-value persistence backends for the session store."""

from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Protocol

logger = logging.getLogger("playtime-analytics")

# Register datetime adapters/converters (required for Python 3.12+)


def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage."""
    return dt.isoformat()


def _convert_datetime(data: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(data.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("TIMESTAMP", _convert_datetime)


# Default database path
DEFAULT_DB_PATH = Path.home() / ".playtime-analytics" / "data.db"

# Schema version for the kv database itself (not the store blob)
SCHEMA_VERSION = 1


class KeyValueBackend(Protocol):
    """Durable async key -> blob storage. Any call may raise."""

    async def init(self) -> None: ...

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, blob: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    def close(self) -> None: ...


class SQLiteBackend:
    """SQLite-backed key-value storage.

    Each call opens a short-lived connection; blocking work runs on a worker
    thread so the event loop never stalls on disk I/O.
    """

    def __init__(self, db_path: str | Path | None = None):
        """Initialize backend with optional custom DB path."""
        if db_path is None:
            db_path = os.environ.get("PLAYTIME_ANALYTICS_DB", str(DEFAULT_DB_PATH))

        self.db_path = Path(db_path)
        self._initialized = False

    @contextmanager
    def _connect(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _ensure_init(self) -> None:
        if not self._initialized:
            raise RuntimeError("Backend not initialized. Call init() first.")

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP
                )
            """)
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
        self._initialized = True

    def _get(self, key: str) -> str | None:
        self._ensure_init()
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None

    def _set(self, key: str, blob: str) -> None:
        self._ensure_init()
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
                (key, blob, datetime.now()),
            )

    def _delete(self, key: str) -> None:
        self._ensure_init()
        with self._connect() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    async def init(self) -> None:
        """Create the database file and tables. Safe to call more than once."""
        if self._initialized:
            return
        await asyncio.to_thread(self._init_db)

    async def get(self, key: str) -> str | None:
        """Return the blob stored under ``key``, or None."""
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, blob: str) -> None:
        """Store ``blob`` under ``key``, replacing any previous value."""
        await asyncio.to_thread(self._set, key, blob)

    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        await asyncio.to_thread(self._delete, key)

    def close(self) -> None:
        # Connections are per-call; nothing is held open.
        self._initialized = False

    def get_db_stats(self) -> dict:
        """Get database statistics."""
        if not self.db_path.exists():
            return {"key_count": 0, "db_size_bytes": 0, "db_path": str(self.db_path)}

        with self._connect() as conn:
            try:
                key_count = conn.execute("SELECT COUNT(*) FROM kv").fetchone()[0]
                last = conn.execute("SELECT MAX(updated_at) AS last FROM kv").fetchone()["last"]
            except sqlite3.OperationalError:
                # Table doesn't exist yet
                key_count, last = 0, None

        # SQLite aggregates return strings rather than converted datetimes
        if isinstance(last, datetime):
            last = last.isoformat()

        return {
            "key_count": key_count,
            "last_write": last,
            "db_size_bytes": self.db_path.stat().st_size,
            "db_path": str(self.db_path),
        }


class MemoryBackend:
    """In-process backend for tests and memory-only operation.

    ``fail_reads`` / ``fail_writes`` make the corresponding calls raise, and
    every successful ``set`` is appended to ``writes`` in order.
    """

    def __init__(self, data: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(data or {})
        self.writes: list[tuple[str, str]] = []
        self.fail_reads = False
        self.fail_writes = False
        self.write_delay = 0.0

    async def init(self) -> None:
        return None

    async def get(self, key: str) -> str | None:
        if self.fail_reads:
            raise OSError("simulated read failure")
        return self.data.get(key)

    async def set(self, key: str, blob: str) -> None:
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if self.fail_writes:
            raise OSError("simulated write failure")
        self.data[key] = blob
        self.writes.append((key, blob))

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def close(self) -> None:
        return None
