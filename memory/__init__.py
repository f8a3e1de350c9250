"""
memory/__init__.py — Wayfarer Session Memory

Public interface for the per-thread session store.

Usage:
    from memory import create_session_store

    store = create_session_store(settings)
    await store.init()
    await store.set_slots("t-1", {"city": "Paris"})
"""

from memory.session_store import (
    InMemorySessionStore,
    SessionStore,
    SqliteSessionStore,
    ThreadRecord,
    create_session_store,
)

__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "SqliteSessionStore",
    "ThreadRecord",
    "create_session_store",
]
