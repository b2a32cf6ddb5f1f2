"""Cache of complete optimized routes keyed by their stop set."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence

from ..routing.models import RouteResult, Stop
from .keys import coordinate_token, coordinate_tokens, route_key
from .ttl import Clock, TTLCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CachedRoute:
    stops: tuple[Stop, ...]
    result: RouteResult


class RouteCache:
    """Whole-route cache.

    A hit needs a fresh entry whose input stops cover exactly the same
    coordinates, in any order, with the same stop count. The returned
    ``tour`` always indexes into the stops passed to ``get``.
    """

    def __init__(self, ttl_seconds: float, clock: Clock | None = None) -> None:
        self._store: TTLCache[str, CachedRoute] = TTLCache(ttl_seconds, clock)

    def get(self, stops: Sequence[Stop]) -> Optional[RouteResult]:
        key = route_key(stops)
        cached = self._store.get(key)
        if cached is None:
            logger.debug(f"Route cache miss for {len(stops)} stops")
            return None
        if len(cached.stops) != len(stops) or coordinate_tokens(cached.stops) != coordinate_tokens(stops):
            logger.debug("Route cache entry found but stop coordinates differ")
            return None
        logger.debug(f"Route cache hit for {len(stops)} stops")
        return _reindexed(cached.result, stops)

    def contains(self, stops: Sequence[Stop]) -> bool:
        return self.get(stops) is not None

    def put(self, stops: Sequence[Stop], result: RouteResult) -> None:
        self._store.set(route_key(stops), CachedRoute(stops=tuple(stops), result=result))

    def sweep(self) -> int:
        return self._store.sweep()

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


def _reindexed(result: RouteResult, stops: Sequence[Stop]) -> RouteResult:
    """Re-express a cached result's tour against ``stops``, which may be a permutation of its input."""
    positions: dict[str, list[int]] = {}
    for index, stop in enumerate(stops):
        positions.setdefault(coordinate_token(stop.coordinate), []).append(index)

    tour = tuple(positions[coordinate_token(stop.coordinate)].pop(0) for stop in result.stops)
    ordered = tuple(stops[index] for index in tour)
    if tour == result.tour and ordered == result.stops:
        return result
    return replace(result, stops=ordered, tour=tour)
