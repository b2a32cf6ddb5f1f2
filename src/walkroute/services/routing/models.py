"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Tuple

from ...config import settings

Coordinate = Tuple[float, float]


@dataclass(frozen=True, slots=True)
class Stop:
    """A named place the walker wants to visit."""

    name: str
    latitude: float
    longitude: float
    order: int = 0

    @property
    def coordinate(self) -> Coordinate:
        return (self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class RouteConfig:
    walking_speed_mps: float = field(default_factory=lambda: settings.walking_speed_mps)
    prioritize_fewer_turns: bool = False
    max_iterations: int = field(default_factory=lambda: settings.max_optimization_iterations)


@dataclass(frozen=True, slots=True)
class Segment:
    """Walking leg between two consecutive stops of a tour.

    ``is_fallback`` marks a straight line drawn between the endpoints because
    the directions provider could not be reached.
    """

    start: Stop
    end: Stop
    distance_m: float
    path: tuple[Coordinate, ...]
    turns: int = 0
    elevation_gain_m: float = 0.0
    is_fallback: bool = False


@dataclass(frozen=True, slots=True)
class RouteStatistics:
    total_distance_m: float
    estimated_duration_s: float
    elevation_gain_m: float
    turn_count: int
    average_segment_length_m: float

    @classmethod
    def zero(cls) -> RouteStatistics:
        return cls(
            total_distance_m=0.0,
            estimated_duration_s=0.0,
            elevation_gain_m=0.0,
            turn_count=0,
            average_segment_length_m=0.0,
        )

    def format(self) -> str:
        """Human readable summary shown next to an optimized route."""
        return "\n".join(
            [
                f"Total Distance: {self.total_distance_m / 1000:.1f} km",
                f"Estimated Duration: {self.estimated_duration_s / 60:.1f} minutes",
                f"Number of Turns: {self.turn_count}",
                f"Average Segment: {self.average_segment_length_m / 1000:.1f} km",
            ]
        )


@dataclass(frozen=True, slots=True)
class RouteResult:
    stops: tuple[Stop, ...]
    tour: tuple[int, ...]
    path: tuple[Coordinate, ...]
    statistics: RouteStatistics
    segments: tuple[Segment, ...] = ()

    @property
    def fallback_segments(self) -> int:
        return sum(1 for segment in self.segments if segment.is_fallback)

    def reindexed_stops(self) -> list[Stop]:
        """Stops in visiting order with ``order`` rewritten to their new position."""
        return [replace(stop, order=position) for position, stop in enumerate(self.stops)]


@dataclass(frozen=True, slots=True)
class Region:
    """Map viewport described by its center and lat/lon spans in degrees."""

    center_latitude: float
    center_longitude: float
    latitude_delta: float
    longitude_delta: float
