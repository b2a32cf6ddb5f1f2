"""Route optimization orchestration service."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Sequence

from ...config import Settings, settings as default_settings
from ..cache import RouteCache, SegmentCache, route_key
from ..cache.keys import coordinate_tokens
from ..cache.ttl import Clock
from ..connectivity import ConnectivityProbe, build_connectivity_probe
from ..geospatial import count_turns, distance_m, is_valid_coordinate
from .errors import (
    InvalidLocations,
    NetworkUnavailable,
    OptimizationFailed,
    RouteOptimizationError,
)
from .models import Coordinate, RouteConfig, RouteResult, RouteStatistics, Segment, Stop
from .osrm_client import DirectionsClient, OSRMDirectionsClient
from .tour import build_distance_matrix, optimize_tour

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class _KeyedLocks:
    """One asyncio lock per key, discarded once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class RouteOrchestrator:
    """Orders stops and assembles a walkable route between them.

    Owns the route and segment caches. Each ``optimize`` call validates the
    stops, answers from the route cache when it can, otherwise orders the
    stops over straight-line distances and fetches every leg concurrently
    from the directions client, falling back to a straight line for legs the
    provider cannot serve.
    """

    def __init__(
        self,
        directions: DirectionsClient,
        connectivity: ConnectivityProbe,
        *,
        segment_cache: SegmentCache | None = None,
        route_cache: RouteCache | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.directions = directions
        self.connectivity = connectivity
        self.segment_cache = segment_cache or SegmentCache(self.settings.cache_ttl_seconds, clock)
        self.route_cache = route_cache or RouteCache(self.settings.cache_ttl_seconds, clock)
        self.max_attempts = self.settings.directions_max_attempts
        self.backoff_seconds = self.settings.directions_backoff_seconds
        self.max_concurrent_requests = self.settings.max_concurrent_requests
        self.timeout_seconds = self.settings.optimize_timeout_seconds
        self._sleep = sleep or asyncio.sleep
        self._inflight = _KeyedLocks()

    # ------------------------------------------------------------------
    # Caller-facing operations
    # ------------------------------------------------------------------

    async def optimize(self, stops: Sequence[Stop], config: RouteConfig | None = None) -> RouteResult:
        """Return the optimized route for ``stops``.

        Raises ``InvalidLocations``, ``NetworkUnavailable`` or
        ``OptimizationFailed``. Legs the directions provider cannot serve are
        drawn as straight lines instead of failing the call.
        """
        config = config or RouteConfig()
        stops = list(stops)
        self._validate(stops)

        cached = self.route_cache.get(stops)
        if cached is not None:
            logger.info(f"Using cached route for {len(stops)} stops")
            return cached

        # Identical stop sets computed concurrently wait for the first one and then hit the cache.
        async with self._inflight.hold(route_key(stops)):
            cached = self.route_cache.get(stops)
            if cached is not None:
                logger.info(f"Using route cached by a concurrent request for {len(stops)} stops")
                return cached

            if not await asyncio.to_thread(self.connectivity.is_online):
                logger.error("No internet connection available for route optimization")
                raise NetworkUnavailable()

            fetched: list[Segment] = []
            try:
                result = await asyncio.wait_for(
                    self._compute(stops, config, fetched), timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError as exc:
                logger.error(f"Route optimization timed out after {self.timeout_seconds:.0f}s")
                raise OptimizationFailed(
                    f"Route optimization timed out after {self.timeout_seconds:.0f}s"
                ) from exc
            except RouteOptimizationError:
                raise
            except Exception as exc:
                logger.exception(f"Unexpected error during route optimization: {exc}")
                raise OptimizationFailed(f"Route optimization failed: {exc}") from exc

            # Nothing reaches either cache until the whole route has succeeded.
            for segment in fetched:
                self.segment_cache.put(
                    segment.start.coordinate, segment.end.coordinate, segment.distance_m, segment.path
                )
            self.route_cache.put(stops, result)
            self.segment_cache.sweep()
            return result

    def has_cached_route(self, stops: Sequence[Stop]) -> bool:
        return self.route_cache.contains(list(stops))

    def clear_cache(self) -> None:
        """Forget every cached route and segment. Call after any change to the stop list."""
        self.route_cache.clear()
        self.segment_cache.clear()
        logger.debug("Route and segment caches cleared")

    async def aclose(self) -> None:
        close = getattr(self.directions, "aclose", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _validate(self, stops: Sequence[Stop]) -> None:
        if len(stops) < self.settings.min_stops:
            logger.error(f"Invalid locations for optimization: {len(stops)} stops")
            raise InvalidLocations(
                f"At least {self.settings.min_stops} stops are required to optimize a route, got {len(stops)}."
            )
        if len(stops) > self.settings.max_stops:
            logger.error(f"Invalid locations for optimization: {len(stops)} stops")
            raise InvalidLocations(
                f"At most {self.settings.max_stops} stops can be optimized at once, got {len(stops)}."
            )
        invalid = [stop.name for stop in stops if not is_valid_coordinate(stop.latitude, stop.longitude)]
        if invalid:
            logger.error(f"Invalid coordinates for stops: {', '.join(invalid)}")
            raise InvalidLocations(f"Stops with invalid coordinates: {', '.join(invalid)}")

    async def _compute(self, stops: list[Stop], config: RouteConfig, fetched: list[Segment]) -> RouteResult:
        logger.info(f"Original order: {_format_order(stops)}")

        matrix = build_distance_matrix([stop.coordinate for stop in stops])
        tour = optimize_tour(
            matrix,
            prioritize_fewer_turns=config.prioritize_fewer_turns,
            max_iterations=config.max_iterations,
        )
        ordered = [stops[index] for index in tour]

        segments = await self._fetch_segments(ordered, fetched)
        path: list[Coordinate] = [point for segment in segments for point in segment.path]

        self._check_result(stops, ordered, path)

        statistics = _route_statistics(segments, config.walking_speed_mps)
        result = RouteResult(
            stops=tuple(ordered),
            tour=tuple(tour),
            path=tuple(path),
            statistics=statistics,
            segments=tuple(segments),
        )

        logger.info(f"Reordered locations: {_format_order(ordered)}")
        logger.info(
            f"Route statistics: {statistics.total_distance_m / 1000:.1f} km, "
            f"{statistics.estimated_duration_s / 60:.1f} min, "
            f"{statistics.turn_count} turns, "
            f"{statistics.elevation_gain_m:.1f} m elevation gain"
        )
        if result.fallback_segments:
            logger.warning(
                f"{result.fallback_segments}/{len(segments)} segments use straight-line fallbacks"
            )
        return result

    async def _fetch_segments(self, ordered: Sequence[Stop], fetched: list[Segment]) -> list[Segment]:
        """Resolve every consecutive leg concurrently and return them in tour order.

        Legs newly fetched from the directions client are appended to ``fetched``
        for the caller to cache once the route as a whole succeeds.
        """
        semaphore = asyncio.Semaphore(self.max_concurrent_requests)
        buffer: list[Segment | None] = [None] * (len(ordered) - 1)

        async def fill(index: int) -> None:
            buffer[index] = await self._resolve_segment(
                index, ordered[index], ordered[index + 1], semaphore, fetched
            )

        tasks = [asyncio.create_task(fill(index)) for index in range(len(buffer))]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        missing = [index for index, segment in enumerate(buffer) if segment is None]
        if missing:
            raise OptimizationFailed(f"Segments {missing} were not resolved.")
        return [segment for segment in buffer if segment is not None]

    async def _resolve_segment(
        self,
        index: int,
        start: Stop,
        end: Stop,
        semaphore: asyncio.Semaphore,
        fetched: list[Segment],
    ) -> Segment:
        cached = self.segment_cache.get(start.coordinate, end.coordinate)
        if cached is not None:
            logger.debug(f"Using cached partial route for segment {index}")
            return self._routed_segment(start, end, cached.distance_m, cached.path)

        logger.debug(f"Calculating route for segment {index}: {start.name} -> {end.name}")
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with semaphore:
                    walked = await self.directions.fetch_walking_path(start.coordinate, end.coordinate)
            except Exception as exc:
                logger.debug(
                    f"Directions attempt {attempt}/{self.max_attempts} failed for segment {index}: {exc}"
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.backoff_seconds)
                continue

            segment = self._routed_segment(start, end, walked.distance_m, walked.path)
            fetched.append(segment)
            return segment

        logger.warning(
            f"All {self.max_attempts} attempts failed for segment {index} "
            f"({start.name} -> {end.name}); using straight line"
        )
        return Segment(
            start=start,
            end=end,
            distance_m=distance_m(start.coordinate, end.coordinate),
            path=(start.coordinate, end.coordinate),
            turns=0,
            elevation_gain_m=0.0,
            is_fallback=True,
        )

    def _routed_segment(
        self,
        start: Stop,
        end: Stop,
        distance: float,
        path: Sequence[Coordinate],
    ) -> Segment:
        return Segment(
            start=start,
            end=end,
            distance_m=distance,
            path=tuple(path),
            turns=count_turns(path, self.settings.turn_threshold_degrees),
            elevation_gain_m=distance * self.settings.elevation_gain_ratio,
        )

    def _check_result(self, stops: Sequence[Stop], ordered: Sequence[Stop], path: Sequence[Coordinate]) -> None:
        if len(ordered) != len(stops) or not path:
            logger.error("Invalid optimization result: stop count mismatch or empty path")
            raise OptimizationFailed("Optimized route is missing stops or path coordinates.")
        if coordinate_tokens(ordered) != coordinate_tokens(stops):
            logger.error("Invalid optimization result: optimized stops differ from the input")
            raise OptimizationFailed("Optimized route does not visit the requested stops.")


def _route_statistics(segments: Sequence[Segment], walking_speed_mps: float) -> RouteStatistics:
    if not segments:
        return RouteStatistics.zero()
    total_distance = sum(segment.distance_m for segment in segments)
    return RouteStatistics(
        total_distance_m=total_distance,
        estimated_duration_s=sum(segment.distance_m / walking_speed_mps for segment in segments),
        elevation_gain_m=sum(segment.elevation_gain_m for segment in segments),
        turn_count=sum(segment.turns for segment in segments),
        average_segment_length_m=total_distance / len(segments),
    )


def _format_order(stops: Sequence[Stop]) -> str:
    return " -> ".join(stop.name for stop in stops)


def build_orchestrator(config: Settings | None = None) -> RouteOrchestrator:
    """Wire an orchestrator against the configured OSRM service."""
    config = config or default_settings
    return RouteOrchestrator(
        directions=OSRMDirectionsClient(
            base_url=config.osrm_base_url,
            profile=config.osrm_profile,
            timeout=config.directions_timeout_seconds,
        ),
        connectivity=build_connectivity_probe(config),
        settings=config,
    )
