"""In-memory key/value store whose entries expire after a fixed time-to-live."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[V]):
    value: V
    timestamp: float


class TTLCache(Generic[K, V]):
    """Thread-safe TTL cache.

    Every read and write goes through one lock, so concurrent tasks (and the
    synchronous maintenance calls) never observe a half-written entry. Expired
    entries are treated as misses immediately and physically removed on the
    next write or explicit ``sweep``.
    """

    def __init__(self, ttl_seconds: float, clock: Clock | None = None) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: Dict[K, CacheEntry[V]] = {}
        self._lock = threading.Lock()

    def _is_fresh(self, entry: CacheEntry[V], now: float) -> bool:
        return now - entry.timestamp < self.ttl_seconds

    def get_entry(self, key: K) -> Optional[CacheEntry[V]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not self._is_fresh(entry, self._clock()):
                return None
            return entry

    def get(self, key: K) -> Optional[V]:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: K, value: V) -> None:
        with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(value=value, timestamp=now)
            self._sweep_locked(now)

    def sweep(self) -> int:
        """Drop expired entries and return how many were removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if not self._is_fresh(entry, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and self._is_fresh(entry, self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
