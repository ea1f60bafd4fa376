"""
Cache module for the QT proxy.

An explicit in-memory cache for extracted devotionals, keyed by
(date, version). The API layer owns one instance per application;
entries expire after a fixed time-to-live and the number of entries is
bounded, since any well-formed date can be requested.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional

from qt_proxy.utils import get_logger


# Module logger
logger = get_logger("cache")

DEFAULT_TTL_SECONDS = 900
DEFAULT_MAX_ENTRIES = 256


@dataclass
class CacheEntry:
    value: Any
    stored_at: float


class DailyCache:
    """
    Thread-safe TTL cache for per-day payloads.

    Expired entries are pruned on every write. When the cache is full the
    oldest entry is evicted. Concurrent misses on the same key share one
    load.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        max_entries: int = DEFAULT_MAX_ENTRIES
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()
        self._loading: Dict[Hashable, threading.Lock] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.stored_at < self.ttl_seconds

    def _prune(self) -> None:
        # Caller holds self._lock
        expired = [key for key, entry in self._entries.items() if not self._is_fresh(entry)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Pruned {len(expired)} expired cache entries")

        while self.max_entries > 0 and len(self._entries) >= self.max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k].stored_at)
            del self._entries[oldest]
            logger.debug(f"Evicted cache entry {oldest}")

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value for key, or None when missing or stale."""
        if not self.enabled:
            return None

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not self._is_fresh(entry):
                del self._entries[key]
                logger.debug(f"Cache entry {key} expired")
                return None
            return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._entries.pop(key, None)
            self._prune()
            self._entries[key] = CacheEntry(value=value, stored_at=self._clock())

    def stored_at(self, key: Hashable) -> Optional[float]:
        """Timestamp at which key was stored, None if not cached."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.stored_at if entry else None

    def invalidate(self, key: Optional[Hashable] = None) -> int:
        """
        Drop one entry, or every entry when key is None.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            if key is None:
                count = len(self._entries)
                self._entries.clear()
                return count
            return 1 if self._entries.pop(key, None) is not None else 0

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        """
        Return the cached value, calling loader to fill a miss.

        Only one loader runs per key at a time; callers arriving meanwhile
        wait and then read the stored value. Exceptions raised by loader
        propagate and nothing is cached.
        """
        value = self.get(key)
        if value is not None:
            logger.debug(f"Cache hit for {key}")
            return value

        with self._lock:
            key_lock = self._loading.setdefault(key, threading.Lock())

        try:
            with key_lock:
                value = self.get(key)
                if value is not None:
                    logger.debug(f"Cache filled while waiting for {key}")
                    return value

                logger.debug(f"Cache miss for {key}")
                value = loader()
                self.set(key, value)
                return value
        finally:
            with self._lock:
                if self._loading.get(key) is key_lock and not key_lock.locked():
                    del self._loading[key]
