import asyncio
import math
from collections import Counter

import pytest

from walkroute.config import Settings
from walkroute.services.connectivity import StaticConnectivityProbe
from walkroute.services.geospatial import distance_m
from walkroute.services.routing.errors import (
    DirectionsFetchFailed,
    InvalidLocations,
    NetworkUnavailable,
    OptimizationFailed,
)
from walkroute.services.routing.models import RouteConfig, Stop
from walkroute.services.routing.osrm_client import WalkingPath
from walkroute.services.routing.service import RouteOrchestrator
from walkroute.services.routing.tour import build_distance_matrix, nearest_neighbor_tour, tour_length

STOPS = [
    Stop("Grand Place", 50.8467, 4.3525, order=0),
    Stop("Atomium", 50.8949, 4.3415, order=1),
    Stop("Manneken Pis", 50.8450, 4.3500, order=2),
    Stop("Royal Palace", 50.8417, 4.3620, order=3),
    Stop("Cinquantenaire", 50.8404, 4.3930, order=4),
]


class ManualClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DummyDirections:
    """Walks in a straight line; optionally fails the first ``failures`` calls per leg."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls = []
        self._per_leg = Counter()

    async def fetch_walking_path(self, start, end):
        self.calls.append((start, end))
        leg = frozenset((start, end))
        self._per_leg[leg] += 1
        if self._per_leg[leg] <= self.failures:
            raise DirectionsFetchFailed("provider unavailable")
        return WalkingPath(distance_m=distance_m(start, end), path=(start, end))


class CornerDirections(DummyDirections):
    """Walks north-south first, then east-west, so every leg has one corner."""

    async def fetch_walking_path(self, start, end):
        self.calls.append((start, end))
        corner = (end[0], start[1])
        return WalkingPath(
            distance_m=distance_m(start, corner) + distance_m(corner, end),
            path=(start, corner, end),
        )


class HangingDirections(DummyDirections):
    def __init__(self) -> None:
        super().__init__()
        self.started = None

    async def fetch_walking_path(self, start, end):
        self.calls.append((start, end))
        if self.started is not None:
            self.started.set()
        await asyncio.Event().wait()


def _orchestrator(directions=None, online=True, clock=None, **overrides) -> RouteOrchestrator:
    config = Settings(directions_backoff_seconds=0.0, **overrides)
    return RouteOrchestrator(
        directions or DummyDirections(),
        StaticConnectivityProbe(online),
        clock=clock,
        settings=config,
    )


def _optimize(orchestrator: RouteOrchestrator, stops, config=None):
    return asyncio.run(orchestrator.optimize(stops, config))


def test_optimize_returns_permutation_anchored_at_first_stop():
    result = _optimize(_orchestrator(), STOPS)

    assert sorted(result.tour) == list(range(len(STOPS)))
    assert result.tour[0] == 0
    assert result.stops[0] == STOPS[0]
    assert result.stops == tuple(STOPS[index] for index in result.tour)
    assert result.path[0] == STOPS[0].coordinate
    assert result.path[-1] == result.stops[-1].coordinate


def test_optimized_order_is_no_longer_than_nearest_neighbor():
    result = _optimize(_orchestrator(), STOPS)
    matrix = build_distance_matrix([stop.coordinate for stop in STOPS])

    assert tour_length(result.tour, matrix) <= tour_length(nearest_neighbor_tour(matrix), matrix) + 1e-9


def test_three_stop_scenario_statistics():
    stops = [Stop("A", 0.001, 0.001), Stop("B", 0.0, 1.0), Stop("C", 1.0, 0.0)]

    result = _optimize(_orchestrator(), stops)

    first, second, third = result.stops
    expected = distance_m(first.coordinate, second.coordinate) + distance_m(second.coordinate, third.coordinate)
    assert {stop.name for stop in result.stops} == {"A", "B", "C"}
    assert result.statistics.total_distance_m == pytest.approx(expected)
    assert result.statistics.turn_count == 0
    assert result.statistics.average_segment_length_m == pytest.approx(expected / 2)
    assert result.statistics.estimated_duration_s == pytest.approx(expected / 1.4)
    assert result.statistics.elevation_gain_m == pytest.approx(expected * 0.01)


def test_path_is_merged_in_tour_order():
    result = _optimize(_orchestrator(), STOPS)

    expected = []
    for start, end in zip(result.stops, result.stops[1:]):
        expected.extend([start.coordinate, end.coordinate])
    assert list(result.path) == expected
    assert [segment.start for segment in result.segments] == list(result.stops[:-1])


def test_path_order_survives_out_of_order_completion():
    finished = []

    class SlowFirstDirections(DummyDirections):
        async def fetch_walking_path(self, start, end):
            self.calls.append((start, end))
            await asyncio.sleep(0.05 / len(self.calls))
            finished.append(start)
            return WalkingPath(distance_m=distance_m(start, end), path=(start, end))

    result = _optimize(_orchestrator(SlowFirstDirections()), STOPS)

    starts = [stop.coordinate for stop in result.stops[:-1]]
    assert finished != starts
    assert list(result.path[::2]) == starts


def test_turns_are_counted_per_segment():
    result = _optimize(_orchestrator(CornerDirections()), STOPS)

    assert result.statistics.turn_count == len(STOPS) - 1
    assert all(segment.turns == 1 for segment in result.segments)


def test_walking_speed_changes_duration():
    result = _optimize(_orchestrator(), STOPS, RouteConfig(walking_speed_mps=2.0))

    assert result.statistics.estimated_duration_s == pytest.approx(result.statistics.total_distance_m / 2.0)


def test_second_call_is_served_from_route_cache():
    directions = DummyDirections()
    orchestrator = _orchestrator(directions)

    first = _optimize(orchestrator, STOPS)
    calls_after_first = len(directions.calls)
    second = _optimize(orchestrator, STOPS)

    assert calls_after_first == len(STOPS) - 1
    assert second is first
    assert len(directions.calls) == calls_after_first


def test_permuted_stops_hit_the_same_cache_entry():
    directions = DummyDirections()
    orchestrator = _orchestrator(directions)
    first = _optimize(orchestrator, STOPS)

    shuffled = [STOPS[3], STOPS[0], STOPS[4], STOPS[1], STOPS[2]]

    assert orchestrator.has_cached_route(shuffled)
    second = _optimize(orchestrator, shuffled)

    assert len(directions.calls) == len(STOPS) - 1
    assert second.path == first.path
    assert [stop.name for stop in second.stops] == [stop.name for stop in first.stops]
    assert [shuffled[i] for i in second.tour] == list(second.stops)
    assert sorted(second.tour) == list(range(len(shuffled)))


def test_expired_route_is_recomputed():
    clock = ManualClock()
    directions = DummyDirections()
    orchestrator = _orchestrator(directions, clock=clock)
    _optimize(orchestrator, STOPS)

    clock.advance(300)

    assert not orchestrator.has_cached_route(STOPS)
    _optimize(orchestrator, STOPS)
    assert len(directions.calls) == 2 * (len(STOPS) - 1)


def test_segment_cache_is_reused_after_route_cache_clears():
    directions = DummyDirections()
    orchestrator = _orchestrator(directions)
    _optimize(orchestrator, STOPS)

    orchestrator.route_cache.clear()
    _optimize(orchestrator, STOPS)

    assert len(directions.calls) == len(STOPS) - 1


def test_clear_cache_forgets_routes_and_segments():
    orchestrator = _orchestrator()
    _optimize(orchestrator, STOPS)
    assert orchestrator.has_cached_route(STOPS)

    orchestrator.clear_cache()

    assert not orchestrator.has_cached_route(STOPS)
    assert len(orchestrator.segment_cache) == 0


def test_retries_until_directions_succeed():
    directions = DummyDirections(failures=2)
    orchestrator = _orchestrator(directions)

    result = _optimize(orchestrator, STOPS)

    assert result.fallback_segments == 0
    assert len(directions.calls) == 3 * (len(STOPS) - 1)
    assert len(orchestrator.segment_cache) == len(STOPS) - 1


def test_exhausted_retries_fall_back_to_straight_lines():
    directions = DummyDirections(failures=math.inf)
    orchestrator = _orchestrator(directions)

    result = _optimize(orchestrator, STOPS)

    assert len(directions.calls) == 3 * (len(STOPS) - 1)
    assert result.fallback_segments == len(STOPS) - 1
    for segment in result.segments:
        assert segment.is_fallback
        assert segment.path == (segment.start.coordinate, segment.end.coordinate)
        assert segment.distance_m == pytest.approx(distance_m(segment.start.coordinate, segment.end.coordinate))
        assert segment.elevation_gain_m == 0
    assert len(orchestrator.segment_cache) == 0
    assert orchestrator.has_cached_route(STOPS)


def test_backoff_sleeps_between_attempts_only():
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    orchestrator = RouteOrchestrator(
        DummyDirections(failures=math.inf),
        StaticConnectivityProbe(True),
        sleep=fake_sleep,
    )

    _optimize(orchestrator, STOPS[:3])

    assert sleeps == [0.5] * 4


@pytest.mark.parametrize(
    "stops",
    [
        STOPS[:2],
        STOPS + [Stop(f"Extra {i}", 50.85 + i / 1000, 4.36) for i in range(11)],
        STOPS[:2] + [Stop("Null Island", 0.0, 0.0)],
        STOPS[:2] + [Stop("Off the map", 95.0, 4.0)],
        STOPS[:2] + [Stop("Not a number", math.nan, 4.0)],
    ],
)
def test_invalid_locations_are_rejected_without_side_effects(stops):
    directions = DummyDirections()
    orchestrator = _orchestrator(directions)

    with pytest.raises(InvalidLocations):
        _optimize(orchestrator, stops)

    assert directions.calls == []
    assert len(orchestrator.route_cache) == 0


def test_offline_fails_fast_but_cached_routes_still_serve():
    directions = DummyDirections()
    offline = _orchestrator(directions, online=False)

    with pytest.raises(NetworkUnavailable):
        _optimize(offline, STOPS)
    assert directions.calls == []

    orchestrator = _orchestrator(directions)
    cached = _optimize(orchestrator, STOPS)
    orchestrator.connectivity = StaticConnectivityProbe(False)
    assert _optimize(orchestrator, STOPS) is cached


def test_concurrent_identical_requests_compute_once():
    directions = DummyDirections()
    orchestrator = _orchestrator(directions)

    async def scenario():
        return await asyncio.gather(orchestrator.optimize(STOPS), orchestrator.optimize(STOPS))

    first, second = asyncio.run(scenario())

    assert second is first
    assert len(directions.calls) == len(STOPS) - 1


def test_cancelled_optimize_leaves_caches_untouched():
    directions = HangingDirections()
    orchestrator = _orchestrator(directions)

    async def scenario():
        directions.started = asyncio.Event()
        task = asyncio.create_task(orchestrator.optimize(STOPS))
        await directions.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert directions.calls
    assert len(orchestrator.segment_cache) == 0
    assert not orchestrator.has_cached_route(STOPS)


def test_timed_out_optimize_discards_legs_that_finished():
    class FirstLegOnlyDirections(DummyDirections):
        async def fetch_walking_path(self, start, end):
            self.calls.append((start, end))
            if len(self.calls) == 1:
                return WalkingPath(distance_m=distance_m(start, end), path=(start, end))
            await asyncio.Event().wait()

    directions = FirstLegOnlyDirections()
    orchestrator = _orchestrator(directions, optimize_timeout_seconds=0.1)

    with pytest.raises(OptimizationFailed):
        _optimize(orchestrator, STOPS)

    assert len(directions.calls) > 1
    assert len(orchestrator.segment_cache) == 0
    assert not orchestrator.has_cached_route(STOPS)


def test_stalled_optimize_times_out():
    directions = HangingDirections()
    orchestrator = _orchestrator(directions, optimize_timeout_seconds=0.05)

    with pytest.raises(OptimizationFailed):
        _optimize(orchestrator, STOPS)

    assert len(orchestrator.segment_cache) == 0
    assert not orchestrator.has_cached_route(STOPS)


def test_concurrency_is_capped():
    in_flight = []
    peak = []

    class CountingDirections(DummyDirections):
        async def fetch_walking_path(self, start, end):
            in_flight.append(start)
            peak.append(len(in_flight))
            await asyncio.sleep(0.01)
            in_flight.remove(start)
            return WalkingPath(distance_m=distance_m(start, end), path=(start, end))

    _optimize(_orchestrator(CountingDirections(), max_concurrent_requests=2), STOPS)

    assert max(peak) == 2


def test_reindexed_stops_follow_visiting_order():
    result = _optimize(_orchestrator(), STOPS)

    reindexed = result.reindexed_stops()

    assert [stop.order for stop in reindexed] == list(range(len(STOPS)))
    assert [stop.name for stop in reindexed] == [stop.name for stop in result.stops]
