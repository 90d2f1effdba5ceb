"""Session store: tracks the active map session and persists playtime history.

The store keeps its whole state in memory for synchronous reads and writes a
JSON snapshot back to a key-value backend after every mutation. Write-backs go
through a single-slot queue drained by one worker task, so the backend always
holds a prefix of the mutation history, in issue order.

Lifecycle::

    store = SessionStore(SQLiteBackend())
    await store.init()
    store.recover()
    store.start("1234-5678-9012", {"title": "Box Fights"})
    ...
    store.stop()
    await store.close()
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from playtime_analytics.backends import KeyValueBackend
from playtime_analytics.timeutils import (
    MS_PER_HOUR,
    day_key,
    days_before,
    format_duration,
    next_day_start,
    now_ms,
    parse_day_key,
)

logger = logging.getLogger("playtime-analytics")

# Current schema version of the persisted store blob
STORE_VERSION = 2


class StoreNotReadyError(RuntimeError):
    """Raised when the store is used before init() has completed."""


@dataclass
class StoreConfig:
    """Tunables for the session store."""

    storage_key: str = "fit.topMaps.v1"
    # Sessions older than this at startup are treated as abandoned
    max_session_ms: int = 8 * MS_PER_HOUR
    retention_days: int = 90
    cleanup_interval_ms: int = MS_PER_HOUR


@dataclass
class ActiveSession:
    """The in-progress session. At most one exists at a time."""

    map_id: str
    started_at: int


@dataclass(frozen=True)
class MapSession:
    """A completed play session on one map.

    Immutable once created. ``ended_at`` must be strictly after ``started_at``.
    """

    map_id: str
    started_at: int
    ended_at: int

    def __post_init__(self):
        """Reject empty or inverted sessions."""
        if self.ended_at <= self.started_at:
            raise ValueError(
                f"Session must end after it starts ({self.started_at} -> {self.ended_at})"
            )

    @property
    def duration_ms(self) -> int:
        return self.ended_at - self.started_at


@dataclass
class MapMetadata:
    """Optional display metadata for a map."""

    map_id: str
    title: str | None = None
    thumbnail: str | None = None
    updated_at: int = 0


# Structure: {"YYYY-MM-DD": {"map_id": milliseconds}}
DailyTotals = dict[str, dict[str, int]]


@dataclass
class StoreState:
    """Aggregate root persisted as a single JSON blob."""

    version: int = STORE_VERSION
    active_session: ActiveSession | None = None
    sessions: list[MapSession] = field(default_factory=list)
    daily_totals: DailyTotals = field(default_factory=dict)
    maps: dict[str, MapMetadata] = field(default_factory=dict)
    last_cleanup_at: int | None = None

    def copy(self) -> StoreState:
        """Deep, independent snapshot of this state."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        """Serialize to the persisted JSON layout."""
        active = self.active_session
        return {
            "version": self.version,
            "activeSession": (
                {"map_id": active.map_id, "startedAt": active.started_at} if active else None
            ),
            "sessions": [
                {"map_id": s.map_id, "startedAt": s.started_at, "endedAt": s.ended_at}
                for s in self.sessions
            ],
            "dailyTotals": self.daily_totals,
            "maps": {
                map_id: {
                    "title": meta.title,
                    "thumbnail": meta.thumbnail,
                    "updatedAt": meta.updated_at,
                }
                for map_id, meta in self.maps.items()
            },
            "lastCleanupAt": self.last_cleanup_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StoreState:
        """Build state from a migrated blob, skipping malformed records."""
        active = None
        raw_active = data.get("activeSession")
        if isinstance(raw_active, dict) and raw_active.get("map_id"):
            try:
                active = ActiveSession(str(raw_active["map_id"]), int(raw_active["startedAt"]))
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Dropping malformed active session: {raw_active!r}")

        sessions = []
        for raw in data.get("sessions") or []:
            try:
                sessions.append(
                    MapSession(str(raw["map_id"]), int(raw["startedAt"]), int(raw["endedAt"]))
                )
            except (KeyError, TypeError, ValueError):
                logger.debug(f"Skipping malformed session record: {raw!r}")

        daily_totals: DailyTotals = {}
        for key, maps in _as_dict(data.get("dailyTotals")).items():
            if not isinstance(maps, dict):
                continue
            day = daily_totals.setdefault(key, {})
            for map_id, ms in maps.items():
                if isinstance(ms, (int, float)) and ms >= 0:
                    day[str(map_id)] = int(ms)

        maps_meta = {}
        for map_id, raw in _as_dict(data.get("maps")).items():
            if isinstance(raw, dict):
                maps_meta[map_id] = MapMetadata(
                    map_id=map_id,
                    title=raw.get("title"),
                    thumbnail=raw.get("thumbnail"),
                    updated_at=_as_int(raw.get("updatedAt")) or 0,
                )

        return cls(
            version=STORE_VERSION,
            active_session=active,
            sessions=sessions,
            daily_totals=daily_totals,
            maps=maps_meta,
            last_cleanup_at=_as_int(data.get("lastCleanupAt")),
        )


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_int(value: Any) -> int | None:
    """Coerce a persisted number, or None if it is missing or not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


# Migration functions: dict of version -> (migration_name, migration_func)
# Each migration upgrades FROM version-1 TO version, mutating the raw blob dict
MIGRATIONS: dict[int, tuple[str, Callable[[dict], None]]] = {}


def migration(version: int, name: str):
    """Decorator to register a store blob migration."""

    def decorator(func: Callable[[dict], None]):
        MIGRATIONS[version] = (name, func)
        return func

    return decorator


@migration(2, "add_map_metadata")
def migrate_v2(data: dict) -> None:
    """Version 1 blobs predate per-map display metadata."""
    if not isinstance(data.get("maps"), dict):
        data["maps"] = {}


def migrate(data: dict) -> dict:
    """Upgrade a raw blob to STORE_VERSION, raising ValueError if unsupported."""
    if not isinstance(data, dict):
        raise ValueError("Store blob is not an object")
    version = data.get("version")
    if not isinstance(version, int) or not 1 <= version <= STORE_VERSION:
        raise ValueError(f"Unsupported store version: {version!r}")

    for target in range(version + 1, STORE_VERSION + 1):
        if target in MIGRATIONS:
            name, migration_func = MIGRATIONS[target]
            logger.info(f"Running store migration {target}: {name}")
            migration_func(data)
    data["version"] = STORE_VERSION
    return data


def add_to_daily_totals(
    daily_totals: DailyTotals, map_id: str, started_at: int, ended_at: int
) -> None:
    """Credit ``[started_at, ended_at)`` to each local calendar day it covers.

    The per-day increments always sum to exactly ``ended_at - started_at``.
    """
    cursor = started_at
    while cursor < ended_at:
        chunk_end = min(ended_at, next_day_start(cursor))
        day = daily_totals.setdefault(day_key(cursor), {})
        day[map_id] = day.get(map_id, 0) + (chunk_end - cursor)
        cursor = chunk_end


def run_cleanup(state: StoreState, now: int, config: StoreConfig, force: bool = False) -> bool:
    """Drop day buckets and sessions older than the retention window.

    Runs at most once per ``cleanup_interval_ms`` unless forced. Returns True
    if a cleanup pass ran.
    """
    last = state.last_cleanup_at
    if not force and last is not None and now - last < config.cleanup_interval_ms:
        return False

    cutoff = days_before(now, config.retention_days)

    expired_days = []
    for key in state.daily_totals:
        ts = parse_day_key(key)
        if ts is None or ts < cutoff:
            expired_days.append(key)
    for key in expired_days:
        del state.daily_totals[key]

    kept = [s for s in state.sessions if s.ended_at >= cutoff]
    dropped = len(state.sessions) - len(kept)
    state.sessions = kept
    state.last_cleanup_at = now

    if expired_days or dropped:
        logger.info(f"Retention cleanup removed {len(expired_days)} days, {dropped} sessions")
    return True


class WriteQueue:
    """Single-slot write-back mailbox drained by one worker task.

    ``submit`` replaces a pending blob that has not started writing yet, so at
    most one write is in flight and at most one waits behind it. Failed writes
    are logged and dropped; the in-memory state stays authoritative.
    """

    def __init__(self, write: Callable[[str], Awaitable[None]]):
        self._write = write
        self._pending: str | None = None
        self._wakeup = asyncio.Event()
        self._settled = asyncio.Event()
        self._settled.set()
        self._worker: asyncio.Task | None = None
        self.completed = 0
        self.failed = 0

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.get_running_loop().create_task(self._run())

    def submit(self, blob: str) -> None:
        self._pending = blob
        self._settled.clear()
        self._wakeup.set()

    async def drain(self) -> None:
        """Wait until every submitted blob has been written (or has failed)."""
        await self._settled.wait()

    async def stop(self) -> None:
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

    async def _run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()

            blob, self._pending = self._pending, None
            if blob is not None:
                try:
                    await self._write(blob)
                    self.completed += 1
                except Exception:
                    self.failed += 1
                    logger.exception("Failed to persist store; keeping in-memory state")

            if self._pending is None:
                self._settled.set()


class SessionStore:
    """Persistence-backed state machine for map play sessions."""

    def __init__(
        self,
        backend: KeyValueBackend,
        config: StoreConfig | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.backend = backend
        self.config = config or StoreConfig()
        self._clock = clock
        self._state: StoreState | None = None
        self._queue: WriteQueue | None = None
        self._init_lock = asyncio.Lock()
        self._listeners: list[Callable[[], None]] = []
        # Set when the backend could not be read at startup; no writes are attempted
        self.degraded = False

    # Lifecycle

    async def init(self) -> None:
        """Load persisted state. Safe to call more than once."""
        async with self._init_lock:
            if self._state is not None:
                return
            state = await self._load()
            self._queue = WriteQueue(self._write)
            self._queue.start()
            self._state = state

    def is_ready(self) -> bool:
        return self._state is not None

    async def flush(self) -> None:
        """Wait for all scheduled write-backs to settle."""
        self._require_ready()
        await self._queue.drain()

    async def close(self) -> None:
        """Flush pending writes, stop the writer and release the backend."""
        if self._queue is not None:
            await self._queue.stop()
            self._queue = None
        self._state = None
        self.backend.close()

    async def _load(self) -> StoreState:
        try:
            await self.backend.init()
            raw = await self.backend.get(self.config.storage_key)
        except Exception:
            logger.warning(
                "Could not load store from backend; continuing in memory-only mode",
                exc_info=True,
            )
            self.degraded = True
            return StoreState()

        if raw is None:
            logger.info("No persisted store found, starting empty")
            return StoreState()

        try:
            state = StoreState.from_dict(migrate(json.loads(raw)))
        except (AttributeError, TypeError, ValueError, KeyError) as e:
            logger.warning(f"Persisted store is unreadable ({e}), starting empty")
            return StoreState()

        logger.info(
            f"Loaded store: {len(state.sessions)} sessions, {len(state.daily_totals)} days tracked"
        )
        return state

    async def _write(self, blob: str) -> None:
        await self.backend.set(self.config.storage_key, blob)

    def _require_ready(self) -> StoreState:
        if self._state is None:
            raise StoreNotReadyError("SessionStore not initialized. Await init() first.")
        return self._state

    def _commit(self) -> None:
        """Schedule a write-back of the current state and notify listeners."""
        if not self.degraded:
            self._queue.submit(json.dumps(self._state.to_dict()))
        self._notify()

    # Change notification

    def on_change(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback fired after each scheduled write. Returns unsubscribe."""
        self._require_ready()
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                logger.exception("Store change listener raised")

    # Reads

    def now(self) -> int:
        """Current time according to the store's clock."""
        return self._clock()

    def read(self) -> StoreState:
        """Snapshot of the current in-memory state. Never blocks."""
        return self._require_ready().copy()

    def active_session(self) -> ActiveSession | None:
        active = self._require_ready().active_session
        return copy.copy(active) if active else None

    def active_elapsed_ms(self) -> int:
        """Milliseconds since the active session started, or 0 when idle."""
        active = self._require_ready().active_session
        if active is None:
            return 0
        return max(0, self.now() - active.started_at)

    def get_metadata(self, map_id: str) -> MapMetadata | None:
        meta = self._require_ready().maps.get(map_id)
        return copy.copy(meta) if meta else None

    def write_stats(self) -> dict:
        """Counters for the write-back queue."""
        self._require_ready()
        return {
            "writes_completed": self._queue.completed,
            "writes_failed": self._queue.failed,
            "degraded": self.degraded,
        }

    # Mutations

    def start(self, map_id: str, metadata: Mapping[str, str | None] | None = None) -> None:
        """Begin a session on ``map_id``, closing any session already active."""
        state = self._require_ready()
        if not map_id:
            raise ValueError("map_id must be a non-empty string")

        now = self.now()
        if state.active_session is not None:
            self._close_active(state, now)

        state.active_session = ActiveSession(map_id=map_id, started_at=now)
        if metadata:
            self._merge_metadata(state, map_id, metadata.get("title"), metadata.get("thumbnail"), now)
        logger.debug(f"Started session on {map_id}")
        self._commit()

    def stop(self) -> MapSession | None:
        """Close the active session. Returns the recorded session, if any."""
        state = self._require_ready()
        if state.active_session is None:
            return None
        session = self._close_active(state, self.now())
        self._commit()
        return session

    def stop_if_active_map_is(self, map_id: str) -> MapSession | None:
        """Close the active session only if it is on ``map_id``."""
        state = self._require_ready()
        active = state.active_session
        if active is None or active.map_id != map_id:
            return None
        return self.stop()

    def recover(self) -> MapSession | None:
        """Force-close a session left open by an unclean shutdown.

        Only sessions older than ``max_session_ms`` are closed; the full
        elapsed time is still credited.
        """
        state = self._require_ready()
        active = state.active_session
        if active is None:
            return None

        now = self.now()
        elapsed = now - active.started_at
        if elapsed <= self.config.max_session_ms:
            return None

        logger.info(f"Recovering abandoned session on {active.map_id} ({format_duration(elapsed)})")
        session = self._close_active(state, now)
        self._commit()
        return session

    def update_metadata(
        self, map_id: str, title: str | None = None, thumbnail: str | None = None
    ) -> MapMetadata:
        """Upsert display metadata; omitted fields keep their previous values."""
        state = self._require_ready()
        if not map_id:
            raise ValueError("map_id must be a non-empty string")
        meta = self._merge_metadata(state, map_id, title, thumbnail, self.now())
        self._commit()
        return copy.copy(meta)

    def reset(self) -> None:
        """Erase all usage history. Map metadata is kept."""
        state = self._require_ready()
        state.active_session = None
        state.sessions = []
        state.daily_totals = {}
        state.last_cleanup_at = None
        logger.info("Playtime history reset")
        self._commit()

    # Internals

    @staticmethod
    def _merge_metadata(
        state: StoreState,
        map_id: str,
        title: str | None,
        thumbnail: str | None,
        now: int,
    ) -> MapMetadata:
        meta = state.maps.setdefault(map_id, MapMetadata(map_id=map_id))
        if title is not None:
            meta.title = title
        if thumbnail is not None:
            meta.thumbnail = thumbnail
        meta.updated_at = now
        return meta

    def _close_active(self, state: StoreState, ended_at: int) -> MapSession | None:
        active = state.active_session
        if active is None:
            return None
        state.active_session = None

        # Clock moved backwards (or zero-length): nothing to record
        if ended_at <= active.started_at:
            logger.debug(f"Discarding non-positive session on {active.map_id}")
            return None

        session = MapSession(active.map_id, active.started_at, ended_at)
        state.sessions.append(session)
        add_to_daily_totals(state.daily_totals, session.map_id, session.started_at, ended_at)
        run_cleanup(state, ended_at, self.config)
        return session
