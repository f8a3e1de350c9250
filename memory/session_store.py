"""
memory/session_store.py — Per-thread Session Store

Durable or in-memory key-value state per conversation thread:
  - bounded message history (oldest trimmed first)
  - slot map (read-modify-write via set_slots(patch, remove))
  - namespaced JSON blobs (receipts, consent state, ...)

Every entry carries a time-to-live of inactivity. Expiry is lazy: an expired
thread is reset on the next read or write that touches it, there is no
background sweep. Every write refreshes the TTL.

Two backends share one record model:
  - InMemorySessionStore  — dict + asyncio.Lock, for dev and tests
  - SqliteSessionStore    — aiosqlite, survives restarts

Usage:
    store = create_session_store(settings)
    await store.init()
    await store.set_slots("t-1", {"city": "Paris"})
    await store.get_slots("t-1")          # → {"city": "Paris"}
"""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import aiosqlite

from exceptions import StoreNotInitializedError, StoreUnavailableError
from observability.logger import get_logger

log = get_logger(__name__)

MAX_MESSAGES = 16
DEFAULT_TTL_SEC = 3600


# ─────────────────────────────────────────────────────────────────────────────
# Record model
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class ThreadRecord:
    """Everything persisted for one thread."""
    messages: list[dict[str, str]] = field(default_factory=list)
    slots: dict[str, str] = field(default_factory=dict)
    blobs: dict[str, Any] = field(default_factory=dict)
    expires_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


# ─────────────────────────────────────────────────────────────────────────────
# Abstract store
# ─────────────────────────────────────────────────────────────────────────────


class SessionStore(ABC):
    """
    Abstract per-thread store. Backends implement _load/_save/_delete;
    the public operations are shared and run under one asyncio.Lock so a
    read-modify-write of the slot map is never interleaved with another.
    """

    def __init__(
        self,
        ttl_sec: int = DEFAULT_TTL_SEC,
        max_messages: int = MAX_MESSAGES,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_sec = ttl_sec
        self.max_messages = max_messages
        self._clock = clock
        self._lock = asyncio.Lock()
        self._initialized = False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def init(self) -> None:
        self._initialized = True

    async def close(self) -> None:
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _require_init(self) -> None:
        if not self._initialized:
            raise StoreNotInitializedError(
                f"{type(self).__name__} is not initialised. Call `await store.init()` first."
            )

    # ── Backend hooks ─────────────────────────────────────────────────────────

    @abstractmethod
    async def _load(self, thread_id: str) -> Optional[ThreadRecord]:
        ...

    @abstractmethod
    async def _save(self, thread_id: str, record: ThreadRecord) -> None:
        ...

    @abstractmethod
    async def _delete(self, thread_id: str) -> None:
        ...

    # ── Internal helpers ──────────────────────────────────────────────────────

    async def _fetch(self, thread_id: str) -> ThreadRecord:
        """Load a live record, resetting it if it expired."""
        record = await self._load(thread_id)
        now = self._clock()
        if record is None:
            return ThreadRecord(expires_at=now + self.ttl_sec)
        if record.is_expired(now):
            log.debug("session_store.expired", thread_id=thread_id)
            await self._delete(thread_id)
            return ThreadRecord(expires_at=now + self.ttl_sec)
        return record

    async def _touch_and_save(self, thread_id: str, record: ThreadRecord) -> None:
        record.expires_at = self._clock() + self.ttl_sec
        await self._save(thread_id, record)

    async def _guarded(self, op: str, thread_id: str, fn):
        self._require_init()
        try:
            async with self._lock:
                return await fn()
        except (StoreNotInitializedError, StoreUnavailableError):
            raise
        except (OSError, aiosqlite.Error, ValueError, TypeError) as e:
            log.error("session_store.op_failed", op=op, thread_id=thread_id, error=str(e))
            raise StoreUnavailableError(f"{op} failed for thread {thread_id}: {e}") from e

    # ── Messages ──────────────────────────────────────────────────────────────

    async def get_messages(self, thread_id: str, limit: Optional[int] = None) -> list[dict[str, str]]:
        async def _op():
            record = await self._fetch(thread_id)
            msgs = list(record.messages)
            return msgs[-limit:] if limit else msgs
        return await self._guarded("get_messages", thread_id, _op)

    async def append_message(
        self,
        thread_id: str,
        message: dict[str, str],
        limit: Optional[int] = None,
    ) -> None:
        cap = limit or self.max_messages

        async def _op():
            record = await self._fetch(thread_id)
            record.messages.append(dict(message))
            if len(record.messages) > cap:
                record.messages = record.messages[-cap:]
            await self._touch_and_save(thread_id, record)
        await self._guarded("append_message", thread_id, _op)

    # ── Slots ─────────────────────────────────────────────────────────────────

    async def get_slots(self, thread_id: str) -> dict[str, str]:
        async def _op():
            return dict((await self._fetch(thread_id)).slots)
        return await self._guarded("get_slots", thread_id, _op)

    async def set_slots(
        self,
        thread_id: str,
        patch: dict[str, str],
        remove: Optional[list[str]] = None,
    ) -> dict[str, str]:
        """Apply a patch (and removals) atomically; return the resulting slot map."""
        async def _op():
            record = await self._fetch(thread_id)
            for key in remove or []:
                record.slots.pop(key, None)
            for key, value in patch.items():
                if value is None or value == "":
                    record.slots.pop(key, None)
                else:
                    record.slots[key] = str(value)
            await self._touch_and_save(thread_id, record)
            return dict(record.slots)
        return await self._guarded("set_slots", thread_id, _op)

    async def replace_slots(self, thread_id: str, slots: dict[str, str]) -> None:
        async def _op():
            record = await self._fetch(thread_id)
            record.slots = {k: str(v) for k, v in slots.items() if v not in (None, "")}
            await self._touch_and_save(thread_id, record)
        await self._guarded("replace_slots", thread_id, _op)

    # ── JSON blobs ────────────────────────────────────────────────────────────

    async def get_json(self, namespace: str, thread_id: str) -> Optional[Any]:
        async def _op():
            return (await self._fetch(thread_id)).blobs.get(namespace)
        return await self._guarded("get_json", thread_id, _op)

    async def set_json(self, namespace: str, thread_id: str, value: Any) -> None:
        async def _op():
            record = await self._fetch(thread_id)
            # Round-trip through JSON so callers cannot keep a live reference
            record.blobs[namespace] = json.loads(json.dumps(value, default=str))
            await self._touch_and_save(thread_id, record)
        await self._guarded("set_json", thread_id, _op)

    # ── TTL / housekeeping ────────────────────────────────────────────────────

    async def expire(self, thread_id: str, ttl_sec: int) -> None:
        async def _op():
            record = await self._load(thread_id)
            if record is None:
                return
            record.expires_at = self._clock() + ttl_sec
            await self._save(thread_id, record)
        await self._guarded("expire", thread_id, _op)

    async def clear(self, thread_id: str) -> None:
        async def _op():
            await self._delete(thread_id)
        await self._guarded("clear", thread_id, _op)


# ─────────────────────────────────────────────────────────────────────────────
# In-memory backend
# ─────────────────────────────────────────────────────────────────────────────


class InMemorySessionStore(SessionStore):
    """Process-local store. Cleared when the process restarts."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._threads: dict[str, ThreadRecord] = {}

    async def _load(self, thread_id: str) -> Optional[ThreadRecord]:
        return self._threads.get(thread_id)

    async def _save(self, thread_id: str, record: ThreadRecord) -> None:
        self._threads[thread_id] = record

    async def _delete(self, thread_id: str) -> None:
        self._threads.pop(thread_id, None)

    def __len__(self) -> int:
        return len(self._threads)


# ─────────────────────────────────────────────────────────────────────────────
# SQLite backend
# ─────────────────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS threads (
    thread_id     TEXT PRIMARY KEY,
    messages_json TEXT NOT NULL DEFAULT '[]',
    slots_json    TEXT NOT NULL DEFAULT '{}',
    blobs_json    TEXT NOT NULL DEFAULT '{}',
    expires_at    REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_threads_expires ON threads(expires_at);
"""


class SqliteSessionStore(SessionStore):
    """
    Async SQLite-backed store. One row per thread; expired rows are deleted
    lazily when touched, or in bulk by purge_expired().
    """

    def __init__(self, db_path: str = "./data/sqlite/sessions.db", *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def init(self) -> None:
        """Create the database file and table if they don't exist."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        await super().init()
        log.info("session_store.sqlite_initialized", db_path=self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
        await super().close()

    async def _load(self, thread_id: str) -> Optional[ThreadRecord]:
        async with self._db.execute(
            "SELECT messages_json, slots_json, blobs_json, expires_at FROM threads WHERE thread_id=?",
            (thread_id,),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return ThreadRecord(
            messages=json.loads(row["messages_json"]),
            slots=json.loads(row["slots_json"]),
            blobs=json.loads(row["blobs_json"]),
            expires_at=row["expires_at"],
        )

    async def _save(self, thread_id: str, record: ThreadRecord) -> None:
        await self._db.execute(
            """INSERT INTO threads (thread_id, messages_json, slots_json, blobs_json, expires_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(thread_id) DO UPDATE SET
                 messages_json=excluded.messages_json,
                 slots_json=excluded.slots_json,
                 blobs_json=excluded.blobs_json,
                 expires_at=excluded.expires_at""",
            (
                thread_id,
                json.dumps(record.messages),
                json.dumps(record.slots),
                json.dumps(record.blobs, default=str),
                record.expires_at,
            ),
        )
        await self._db.commit()

    async def _delete(self, thread_id: str) -> None:
        await self._db.execute("DELETE FROM threads WHERE thread_id=?", (thread_id,))
        await self._db.commit()

    async def purge_expired(self) -> int:
        """Delete every expired row; returns the number removed."""
        self._require_init()
        async with self._lock:
            cur = await self._db.execute(
                "DELETE FROM threads WHERE expires_at <= ?", (self._clock(),)
            )
            await self._db.commit()
            return cur.rowcount or 0


# ─────────────────────────────────────────────────────────────────────────────
# Factory
# ─────────────────────────────────────────────────────────────────────────────


def create_session_store(settings) -> SessionStore:
    """Build (but do not init) the backend named by settings.session.kind."""
    cfg = settings.session
    if cfg.kind == "sqlite":
        return SqliteSessionStore(
            db_path=cfg.sqlite_path,
            ttl_sec=cfg.ttl_sec,
            max_messages=cfg.max_messages,
        )
    return InMemorySessionStore(ttl_sec=cfg.ttl_sec, max_messages=cfg.max_messages)
