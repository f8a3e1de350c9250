"""
agent/thread_state.py — Thread state facade

The orchestrator's view of one conversation thread on top of the
SessionStore: slots (with per-slot timestamps for decay), last intent,
message history, the last receipt and the consent sub-state.

Every store call is bounded by `timeout_ms`. A failing or slow store
degrades the turn to stateless behaviour: reads return empty values,
writes are dropped, and the failure is logged.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from agent.consent import ConsentState, consent_patch, read_consent_state
from agent.context_transition import WORKFLOW_STATE_SLOTS
from agent.receipts import Receipt
from exceptions import StoreUnavailableError
from memory.session_store import SessionStore
from observability.logger import get_logger
from observability.metrics import metrics

log = get_logger(__name__)

T = TypeVar("T")

_NS_SLOT_TIMES = "slot_times"
_NS_LAST_INTENT = "last_intent"
_NS_RECEIPT = "receipt"


class ThreadState:

    def __init__(
        self,
        store: SessionStore,
        timeout_ms: int = 2000,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._timeout = timeout_ms / 1000.0
        self._clock = clock

    @property
    def store(self) -> SessionStore:
        return self._store

    async def _call(self, op: str, thread_id: str, fn: Callable[[], Awaitable[T]], default: T) -> T:
        try:
            return await asyncio.wait_for(fn(), timeout=self._timeout)
        except asyncio.TimeoutError:
            log.warning("thread_state.timeout", op=op, thread_id=thread_id, timeout=self._timeout)
        except StoreUnavailableError as e:
            log.warning("thread_state.unavailable", op=op, thread_id=thread_id, error=str(e))
        metrics.incr("store.degraded", op=op)
        return default

    # ── Slots ─────────────────────────────────────────────────────────────────

    async def get_slots(self, thread_id: str) -> dict[str, str]:
        return await self._call("get_slots", thread_id, lambda: self._store.get_slots(thread_id), {})

    async def update_slots(
        self,
        thread_id: str,
        patch: dict[str, str],
        remove: Optional[list[str]] = None,
    ) -> dict[str, str]:
        """Apply a slot patch; returns the resulting slots (empty when degraded)."""
        now = self._clock()

        async def _op() -> dict[str, str]:
            slots = await self._store.set_slots(thread_id, patch, remove)
            times = await self._store.get_json(_NS_SLOT_TIMES, thread_id) or {}
            for key, value in patch.items():
                if value:
                    times[key] = now
            times = {k: v for k, v in times.items() if k in slots}
            await self._store.set_json(_NS_SLOT_TIMES, thread_id, times)
            return slots

        return await self._call("update_slots", thread_id, _op, {})

    async def replace_slots(self, thread_id: str, slots: dict[str, str]) -> None:
        """Overwrite the slot map; timestamps of kept slots survive, new ones start now."""
        now = self._clock()

        async def _op() -> None:
            times = await self._store.get_json(_NS_SLOT_TIMES, thread_id) or {}
            await self._store.replace_slots(thread_id, slots)
            await self._store.set_json(
                _NS_SLOT_TIMES, thread_id, {k: times.get(k, now) for k in slots}
            )

        await self._call("replace_slots", thread_id, _op, None)

    async def slot_ages(self, thread_id: str) -> dict[str, float]:
        """Minutes since each slot was last written."""
        now = self._clock()

        async def _op() -> dict[str, float]:
            times = await self._store.get_json(_NS_SLOT_TIMES, thread_id) or {}
            return {k: max(0.0, (now - float(t)) / 60.0) for k, t in times.items()}

        return await self._call("slot_ages", thread_id, _op, {})

    async def clear_workflow(self, thread_id: str) -> None:
        await self.update_slots(thread_id, {}, remove=sorted(WORKFLOW_STATE_SLOTS))

    # ── Intent ────────────────────────────────────────────────────────────────

    async def get_last_intent(self, thread_id: str) -> Optional[str]:
        return await self._call(
            "get_last_intent", thread_id,
            lambda: self._store.get_json(_NS_LAST_INTENT, thread_id), None,
        )

    async def set_last_intent(self, thread_id: str, intent: str) -> None:
        await self._call(
            "set_last_intent", thread_id,
            lambda: self._store.set_json(_NS_LAST_INTENT, thread_id, intent), None,
        )

    # ── Messages ──────────────────────────────────────────────────────────────

    async def append_message(self, thread_id: str, role: str, content: str) -> None:
        await self._call(
            "append_message", thread_id,
            lambda: self._store.append_message(thread_id, {"role": role, "content": content}), None,
        )

    async def get_messages(self, thread_id: str, limit: Optional[int] = None) -> list[dict[str, str]]:
        return await self._call(
            "get_messages", thread_id, lambda: self._store.get_messages(thread_id, limit), [],
        )

    # ── Receipts ──────────────────────────────────────────────────────────────

    async def save_receipt(self, thread_id: str, receipt: Receipt) -> None:
        await self._call(
            "save_receipt", thread_id,
            lambda: self._store.set_json(_NS_RECEIPT, thread_id, receipt.model_dump(mode="json")), None,
        )

    async def load_receipt(self, thread_id: str) -> Optional[Receipt]:
        data: Any = await self._call(
            "load_receipt", thread_id, lambda: self._store.get_json(_NS_RECEIPT, thread_id), None,
        )
        return Receipt.model_validate(data) if data else None

    # ── Consent ───────────────────────────────────────────────────────────────

    async def read_consent(self, thread_id: str) -> ConsentState:
        return read_consent_state(await self.get_slots(thread_id))

    async def write_consent(self, thread_id: str, kind: str = "", pending: str = "") -> None:
        """Set one consent offer, or clear them all when `kind` is empty."""
        await self.update_slots(thread_id, consent_patch(kind, pending))
