"""
Cooldown tracking for repeat-suppressed notifications.

Responsibility:
    Remembers, per key, until when an action (an SLA reminder for one
    step) is suppressed.  The interface lets a deployment back it with an
    external cache; the in-process implementation evicts expired entries
    and never grows past a fixed bound.

Architecture position:
    Kernel > Utils.  Pure in-process state; times are passed in, never
    read from the system clock.

Invariants enforced:
    - ``try_acquire`` is atomic per store: two callers racing on one key
      cannot both acquire it inside the window.
    - Expired entries are evicted on every acquire; when the bound is
      exceeded the oldest entries go first.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Protocol


class CooldownStore(Protocol):
    def try_acquire(self, key: str, now: datetime, ttl_seconds: float) -> bool:
        """Start a cooldown for ``key`` unless one is running; True if started."""
        ...

    def clear(self) -> None:
        ...


class InMemoryCooldownStore:
    """Process-scoped CooldownStore with TTL eviction and an entry bound."""

    def __init__(self, max_entries: int = 10_000):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._expires: OrderedDict[str, datetime] = OrderedDict()
        self._lock = threading.Lock()

    def try_acquire(self, key: str, now: datetime, ttl_seconds: float) -> bool:
        with self._lock:
            self._evict_expired(now)
            if key in self._expires:
                return False
            self._expires[key] = now + timedelta(seconds=ttl_seconds)
            while len(self._expires) > self._max_entries:
                self._expires.popitem(last=False)
            return True

    def clear(self) -> None:
        with self._lock:
            self._expires.clear()

    def __len__(self) -> int:
        return len(self._expires)

    def _evict_expired(self, now: datetime) -> None:
        expired = [k for k, until in self._expires.items() if until <= now]
        for k in expired:
            del self._expires[k]
