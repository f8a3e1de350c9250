"""
tests/unit/test_session_store.py — Session Store and ThreadState Tests

Covers:
  - Not-initialized is distinct from empty
  - Slot patches: set, overwrite, remove by empty value, remove list
  - Message history trimmed oldest-first at max_messages
  - JSON blobs are namespaced and copied
  - TTL: inactivity expiry is lazy and every write refreshes it
  - SQLite backend round-trips a record and purges expired threads
  - ThreadState degrades to empty values when the store fails or times out
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from agent.receipts import build_receipt
from agent.thread_state import ThreadState
from exceptions import StoreNotInitializedError, StoreUnavailableError
from memory.session_store import (
    InMemorySessionStore,
    SqliteSessionStore,
    create_session_store,
)


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def store(clock):
    s = InMemorySessionStore(ttl_sec=60, max_messages=3, clock=clock)
    await s.init()
    yield s
    await s.close()


# ─────────────────────────────────────────────────────────────────────────────
# Lifecycle
# ─────────────────────────────────────────────────────────────────────────────


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_not_initialized_raises(self):
        s = InMemorySessionStore()
        with pytest.raises(StoreNotInitializedError):
            await s.get_slots("t")

    @pytest.mark.asyncio
    async def test_initialized_empty_thread_returns_empty(self, store):
        assert await store.get_slots("t") == {}
        assert await store.get_messages("t") == []
        assert await store.get_json("receipt", "t") is None

    def test_create_from_settings(self, tmp_path):
        from config.settings import SessionConfig, Settings
        mem = create_session_store(Settings())
        assert isinstance(mem, InMemorySessionStore)
        sql = create_session_store(Settings(session=SessionConfig(
            kind="sqlite", sqlite_path=str(tmp_path / "s.db"), ttl_sec=120,
        )))
        assert isinstance(sql, SqliteSessionStore)
        assert sql.ttl_sec == 120


# ─────────────────────────────────────────────────────────────────────────────
# Slots
# ─────────────────────────────────────────────────────────────────────────────


class TestSlots:

    @pytest.mark.asyncio
    async def test_patch_merges(self, store):
        await store.set_slots("t", {"city": "Paris"})
        result = await store.set_slots("t", {"month": "June"})
        assert result == {"city": "Paris", "month": "June"}

    @pytest.mark.asyncio
    async def test_empty_value_removes(self, store):
        await store.set_slots("t", {"city": "Paris", "month": "June"})
        result = await store.set_slots("t", {"month": ""})
        assert result == {"city": "Paris"}

    @pytest.mark.asyncio
    async def test_remove_list(self, store):
        await store.set_slots("t", {"city": "Paris", "awaiting_search_consent": "true"})
        result = await store.set_slots("t", {}, remove=["awaiting_search_consent", "absent"])
        assert result == {"city": "Paris"}

    @pytest.mark.asyncio
    async def test_replace(self, store):
        await store.set_slots("t", {"city": "Paris", "month": "June"})
        await store.replace_slots("t", {"city": "Rome", "dates": ""})
        assert await store.get_slots("t") == {"city": "Rome"}

    @pytest.mark.asyncio
    async def test_threads_are_isolated(self, store):
        await store.set_slots("a", {"city": "Paris"})
        assert await store.get_slots("b") == {}

    @pytest.mark.asyncio
    async def test_concurrent_patches_do_not_lose_updates(self, store):
        await asyncio.gather(*(
            store.set_slots("t", {f"k{i}": str(i)}) for i in range(20)
        ))
        assert len(await store.get_slots("t")) == 20


# ─────────────────────────────────────────────────────────────────────────────
# Messages and blobs
# ─────────────────────────────────────────────────────────────────────────────


class TestMessages:

    @pytest.mark.asyncio
    async def test_trimmed_oldest_first(self, store):
        for i in range(5):
            await store.append_message("t", {"role": "user", "content": str(i)})
        msgs = await store.get_messages("t")
        assert [m["content"] for m in msgs] == ["2", "3", "4"]

    @pytest.mark.asyncio
    async def test_limit_on_read(self, store):
        for i in range(3):
            await store.append_message("t", {"role": "user", "content": str(i)})
        assert [m["content"] for m in await store.get_messages("t", limit=2)] == ["1", "2"]


class TestJsonBlobs:

    @pytest.mark.asyncio
    async def test_namespaced(self, store):
        await store.set_json("receipt", "t", {"sources": ["Open-Meteo"]})
        await store.set_json("last_intent", "t", "weather")
        assert await store.get_json("receipt", "t") == {"sources": ["Open-Meteo"]}
        assert await store.get_json("last_intent", "t") == "weather"

    @pytest.mark.asyncio
    async def test_value_is_copied(self, store):
        value = {"sources": ["a"]}
        await store.set_json("receipt", "t", value)
        value["sources"].append("b")
        assert await store.get_json("receipt", "t") == {"sources": ["a"]}


# ─────────────────────────────────────────────────────────────────────────────
# TTL
# ─────────────────────────────────────────────────────────────────────────────


class TestTTL:

    @pytest.mark.asyncio
    async def test_expires_after_inactivity(self, store, clock):
        await store.set_slots("t", {"city": "Paris"})
        clock.now += 61
        assert await store.get_slots("t") == {}

    @pytest.mark.asyncio
    async def test_write_refreshes_ttl(self, store, clock):
        await store.set_slots("t", {"city": "Paris"})
        clock.now += 50
        await store.append_message("t", {"role": "user", "content": "hi"})
        clock.now += 50
        assert await store.get_slots("t") == {"city": "Paris"}

    @pytest.mark.asyncio
    async def test_read_does_not_refresh_ttl(self, store, clock):
        await store.set_slots("t", {"city": "Paris"})
        clock.now += 50
        await store.get_slots("t")
        clock.now += 11
        assert await store.get_slots("t") == {}

    @pytest.mark.asyncio
    async def test_expire_sets_custom_ttl(self, store, clock):
        await store.set_slots("t", {"city": "Paris"})
        await store.expire("t", 5)
        clock.now += 6
        assert await store.get_slots("t") == {}

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await store.set_slots("t", {"city": "Paris"})
        await store.clear("t")
        assert await store.get_slots("t") == {}
        assert len(store) == 0


# ─────────────────────────────────────────────────────────────────────────────
# SQLite backend
# ─────────────────────────────────────────────────────────────────────────────


class TestSqliteStore:

    @pytest.mark.asyncio
    async def test_round_trip_survives_reopen(self, tmp_path, clock):
        path = str(tmp_path / "sessions.db")
        s = SqliteSessionStore(db_path=path, ttl_sec=60, clock=clock)
        await s.init()
        await s.set_slots("t", {"city": "Lisbon"})
        await s.append_message("t", {"role": "user", "content": "hi"})
        await s.set_json("last_intent", "t", "weather")
        await s.close()

        reopened = SqliteSessionStore(db_path=path, ttl_sec=60, clock=clock)
        await reopened.init()
        assert await reopened.get_slots("t") == {"city": "Lisbon"}
        assert await reopened.get_messages("t") == [{"role": "user", "content": "hi"}]
        assert await reopened.get_json("last_intent", "t") == "weather"
        await reopened.close()

    @pytest.mark.asyncio
    async def test_purge_expired(self, tmp_path, clock):
        s = SqliteSessionStore(db_path=str(tmp_path / "s.db"), ttl_sec=60, clock=clock)
        await s.init()
        await s.set_slots("old", {"city": "Oslo"})
        clock.now += 30
        await s.set_slots("new", {"city": "Rome"})
        clock.now += 31
        assert await s.purge_expired() == 1
        assert await s.get_slots("new") == {"city": "Rome"}
        await s.close()


# ─────────────────────────────────────────────────────────────────────────────
# ThreadState facade
# ─────────────────────────────────────────────────────────────────────────────


class TestThreadState:

    @pytest.mark.asyncio
    async def test_slot_ages_in_minutes(self, store, clock):
        ts = ThreadState(store, clock=clock)
        await ts.update_slots("t", {"city": "Paris"})
        clock.now += 120
        await ts.update_slots("t", {"month": "June"})
        ages = await ts.slot_ages("t")
        assert ages["city"] == pytest.approx(2.0)
        assert ages["month"] == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_replace_keeps_timestamps_of_kept_slots(self, store, clock):
        ts = ThreadState(store, clock=clock)
        await ts.update_slots("t", {"city": "Paris", "month": "June"})
        clock.now += 60
        await ts.replace_slots("t", {"city": "Paris", "dates": "June 3"})
        ages = await ts.slot_ages("t")
        assert set(ages) == {"city", "dates"}
        assert ages["city"] == pytest.approx(1.0)
        assert ages["dates"] == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_clear_workflow_keeps_content_slots(self, store):
        ts = ThreadState(store)
        await ts.update_slots("t", {"city": "Paris", "awaiting_web_search_consent": "true"})
        await ts.clear_workflow("t")
        assert await ts.get_slots("t") == {"city": "Paris"}

    @pytest.mark.asyncio
    async def test_last_intent_and_messages(self, store):
        ts = ThreadState(store)
        await ts.set_last_intent("t", "weather")
        await ts.append_message("t", "user", "hi")
        assert await ts.get_last_intent("t") == "weather"
        assert await ts.get_messages("t") == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_receipt_round_trip(self, store):
        ts = ThreadState(store)
        receipt = build_receipt([], ["Asked a clarifying question"], 400)
        await ts.save_receipt("t", receipt)
        assert await ts.load_receipt("t") == receipt
        assert await ts.load_receipt("other") is None

    @pytest.mark.asyncio
    async def test_consent_round_trip(self, store):
        ts = ThreadState(store)
        await ts.write_consent("t", kind="web_after_rag", pending="visa rules for Japan")
        state = await ts.read_consent("t")
        assert state.awaiting and state.kind == "web_after_rag"
        assert state.pending == "visa rules for Japan"
        await ts.write_consent("t")
        assert not (await ts.read_consent("t")).awaiting

    @pytest.mark.asyncio
    async def test_unavailable_store_degrades_to_empty(self):
        broken = MagicMock()
        broken.get_slots = AsyncMock(side_effect=StoreUnavailableError("disk gone"))
        broken.get_json = AsyncMock(side_effect=StoreUnavailableError("disk gone"))
        ts = ThreadState(broken)
        assert await ts.get_slots("t") == {}
        assert await ts.get_last_intent("t") is None
        assert await ts.load_receipt("t") is None

    @pytest.mark.asyncio
    async def test_slow_store_times_out(self):
        async def _slow(*args, **kwargs):
            await asyncio.sleep(1)
            return {"city": "Paris"}

        slow = MagicMock()
        slow.get_slots = _slow
        ts = ThreadState(slow, timeout_ms=10)
        assert await ts.get_slots("t") == {}

    @pytest.mark.asyncio
    async def test_not_initialized_propagates(self):
        ts = ThreadState(InMemorySessionStore())
        with pytest.raises(StoreNotInitializedError):
            await ts.get_slots("t")
