"""
Decision Cache - short-lived memo of read-only verification outcomes.

Entries expire by age only. Writes to the ledger do not invalidate
anything, so a cached "not bound yet" can lag a real claim by up to the
TTL. Claims themselves never read or write the cache.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import replace
from typing import Callable, Optional

from .models import Decision

NO_CANDIDATE = "noid"
ANY_PLUGIN = "any"

CacheKey = tuple[str, str, str, str]


def cache_key(email: str, access_code: str, candidate: str = "", plugin_filter: str = "") -> CacheKey:
    """
    Key for one query shape.

    Candidate and plugin filter are part of the key so queries that differ
    only in who is asking, or for which plugin, never share an entry.
    """
    return (
        email,
        access_code,
        candidate or NO_CANDIDATE,
        plugin_filter or ANY_PLUGIN,
    )


class DecisionCache:
    """Thread-safe TTL cache, bounded in size (oldest entries dropped first)."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        # key -> (expires_at, decision)
        self._entries: OrderedDict[CacheKey, tuple[float, Decision]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: CacheKey) -> Optional[Decision]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, decision = entry
            if now >= expires_at:
                self._entries.pop(key, None)
                return None
            return replace(decision)

    def put(self, key: CacheKey, decision: Decision, ttl: Optional[float] = None):
        lifetime = self.ttl_seconds if ttl is None else float(ttl)
        if lifetime <= 0:
            return
        now = self._clock()
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (now + lifetime, replace(decision))
            self._prune(now)

    def _prune(self, now: float):
        for key, (expires_at, _) in list(self._entries.items()):
            if now >= expires_at:
                self._entries.pop(key, None)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self):
        with self._lock:
            self._entries.clear()
