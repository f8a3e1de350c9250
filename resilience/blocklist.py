"""
resilience/blocklist.py — TTL Host Blocklist

Hosts that keep failing are excluded from crawling and search for a while.
Entries expire lazily: is_blocked() drops a stale entry when it sees one,
blocked_hosts() purges every stale entry. There is no background timer.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_BLOCK_TTL_MS = 900_000  # 15 minutes


class HostBlocklist:
    def __init__(
        self,
        default_ttl_ms: int = DEFAULT_BLOCK_TTL_MS,
        clock: Callable[[], float] = lambda: time.time() * 1000,
    ):
        self.default_ttl_ms = default_ttl_ms if default_ttl_ms > 0 else DEFAULT_BLOCK_TTL_MS
        self._clock = clock
        self._expiry: dict[str, float] = {}

    def block(self, host: str, ttl_ms: Optional[int] = None) -> None:
        if not host:
            return
        key = host.lower()
        self._expiry[key] = self._clock() + (ttl_ms if ttl_ms is not None else self.default_ttl_ms)
        log.info("blocklist.blocked", host=key, ttl_ms=ttl_ms or self.default_ttl_ms)

    def is_blocked(self, host: str) -> bool:
        if not host:
            return False
        key = host.lower()
        expires = self._expiry.get(key)
        if expires is None:
            return False
        if self._clock() > expires:
            del self._expiry[key]
            return False
        return True

    def blocked_hosts(self) -> list[str]:
        now = self._clock()
        for host in [h for h, exp in self._expiry.items() if now > exp]:
            del self._expiry[host]
        return sorted(self._expiry)

    def unblock(self, host: str) -> None:
        self._expiry.pop(host.lower(), None)

    def clear(self) -> None:
        self._expiry.clear()

    def __contains__(self, host: str) -> bool:
        return self.is_blocked(host)
