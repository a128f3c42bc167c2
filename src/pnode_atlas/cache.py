"""In-process TTL cache for snapshots and derived stats.

Stands in for the hosted key/value cache: ``get`` returns ``None`` once an
entry's TTL has elapsed. The collector never touches the cache; callers
decide when to read a cached snapshot and when to collect a fresh one.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

KEY_SNAPSHOT = "network:snapshot"
KEY_STATS = "network:stats"
KEY_GEO = "network:geo"

TTL_SNAPSHOT = 60   # seconds
TTL_STATS = 30      # seconds
TTL_GEO = 300       # seconds

MAX_ENTRIES = 1_000


class SnapshotCache:
    """Key/value store with a per-entry TTL and LRU eviction."""

    def __init__(
        self,
        max_entries: int = MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._max_entries = max_entries
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: Any, ttl_seconds: float) -> bool:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._entries[key] = (self._clock() + ttl_seconds, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Cache evicted %s", evicted)
        return True

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def ttl(self, key: str) -> float | None:
        """Seconds left for ``key``, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        remaining = entry[0] - self._clock()
        return remaining if remaining > 0 else None
