"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from shapely.geometry import MultiPoint

from .routing.models import Coordinate, Region, Stop

EARTH_RADIUS_KM = 6371.0
EARTH_RADIUS_M = EARTH_RADIUS_KM * 1000.0

USER_LOCATION_SPAN_DEGREES = 0.02
DEFAULT_REGION = Region(
    center_latitude=39.9334,
    center_longitude=32.8597,
    latitude_delta=0.1,
    longitude_delta=0.1,
)


def is_valid_coordinate(lat: float, lon: float) -> bool:
    """Return True for a finite, in-range coordinate that is not the (0, 0) placeholder."""

    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    if lat == 0 and lon == 0:
        return False
    return abs(lat) <= 90 and abs(lon) <= 180


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return haversine_km(lat1, lon1, lat2, lon2) * 1000.0


def distance_m(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in metres between two (lat, lon) tuples."""

    return haversine_m(a[0], a[1], b[0], b[1])


def path_length_m(path: Sequence[Coordinate]) -> float:
    return sum(distance_m(path[i], path[i + 1]) for i in range(len(path) - 1))


def bearing_degrees(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the initial bearing from (lat1, lon1) to (lat2, lon2)."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)
    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)
    bearing = math.degrees(math.atan2(y, x))
    return (bearing + 360) % 360


def count_turns(path: Sequence[Coordinate], threshold_degrees: float = 20.0) -> int:
    """Count interior vertices of ``path`` where the heading changes by more than the threshold."""

    if len(path) < 3:
        return 0

    turns = 0
    for i in range(1, len(path) - 1):
        (lat0, lon0), (lat1, lon1), (lat2, lon2) = path[i - 1], path[i], path[i + 1]
        heading_in = bearing_degrees(lat0, lon0, lat1, lon1)
        heading_out = bearing_degrees(lat1, lon1, lat2, lon2)
        change = abs(heading_out - heading_in)
        if change > 180:
            change = 360 - change
        if change > threshold_degrees:
            turns += 1
    return turns


def bounding_region(
    stops: Iterable[Stop],
    user_location: Coordinate | None = None,
    span_multiplier: float = 1.3,
) -> Region:
    """Viewport enclosing every valid stop, padded by ``span_multiplier``.

    A known user location wins and gets a fixed close-up span. Falls back to
    ``DEFAULT_REGION`` when there is nothing valid to frame.
    """

    if user_location is not None:
        return Region(
            center_latitude=user_location[0],
            center_longitude=user_location[1],
            latitude_delta=USER_LOCATION_SPAN_DEGREES,
            longitude_delta=USER_LOCATION_SPAN_DEGREES,
        )

    points = [
        (stop.longitude, stop.latitude)
        for stop in stops
        if is_valid_coordinate(stop.latitude, stop.longitude)
    ]
    if not points:
        return DEFAULT_REGION

    min_lon, min_lat, max_lon, max_lat = MultiPoint(points).bounds
    return Region(
        center_latitude=(min_lat + max_lat) / 2,
        center_longitude=(min_lon + max_lon) / 2,
        latitude_delta=(max_lat - min_lat) * span_multiplier,
        longitude_delta=(max_lon - min_lon) * span_multiplier,
    )
