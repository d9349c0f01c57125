# src/crewguard/engine/cache.py
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime

from crewguard.engine.snapshot import Clock, utc_now
from crewguard.schemas.models import Conflict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    conflicts: tuple[Conflict, ...]
    computed_at: datetime


class ConflictCache:
    """
    @brief
    Memoizes scan results per scan-scope fingerprint.

    @details
    There is no time-based expiry: an entry stays valid until it is
    explicitly invalidated or the cache is cleared. Contract for writers:
    after any Assignment/Phase/Employee mutation, the caller must invalidate
    (usually `clear()`) or accept stale conflict data for up to one scan
    interval. A scan that completes after a clear repopulates its entry.

    Access is serialized by a single lock. The cache is bounded by
    `max_entries`; the least recently written scope is evicted first.
    """

    def __init__(self, clock: Clock = utc_now, max_entries: int = 32) -> None:
        self._clock = clock
        self._max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, conflicts: list[Conflict]) -> CacheEntry:
        """Store a scan result; last write wins for concurrent scans of one scope."""
        entry = CacheEntry(conflicts=tuple(conflicts), computed_at=self._clock())
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("ConflictCache: evicted scope %s", evicted)
        return entry

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.debug("ConflictCache: cleared %d entries", count)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
