"""Cache of walking segments fetched from the directions provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..routing.models import Coordinate
from .keys import coordinate_token, segment_key
from .ttl import Clock, TTLCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CachedSegment:
    distance_m: float
    path: tuple[Coordinate, ...]
    origin: str


class SegmentCache:
    def __init__(self, ttl_seconds: float, clock: Clock | None = None) -> None:
        self._store: TTLCache[str, CachedSegment] = TTLCache(ttl_seconds, clock)

    def get(self, start: Coordinate, end: Coordinate) -> Optional[CachedSegment]:
        """Return the fresh segment between ``start`` and ``end``, oriented start -> end."""
        key = segment_key(start, end)
        cached = self._store.get(key)
        if cached is None:
            return None
        logger.debug(f"Segment cache hit for {key}")
        origin = coordinate_token(start)
        if cached.origin != origin:
            return CachedSegment(distance_m=cached.distance_m, path=tuple(reversed(cached.path)), origin=origin)
        return cached

    def put(self, start: Coordinate, end: Coordinate, distance_m: float, path: tuple[Coordinate, ...]) -> None:
        self._store.set(
            segment_key(start, end),
            CachedSegment(distance_m=distance_m, path=tuple(path), origin=coordinate_token(start)),
        )

    def sweep(self) -> int:
        return self._store.sweep()

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)
