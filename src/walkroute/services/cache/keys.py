"""Cache key naming for routes and segments.

Coordinates are rounded to six decimal places (about 0.1 m) before they
become part of a key, so float noise past that precision maps to one entry.
"""

from __future__ import annotations

from typing import Iterable

from ..routing.models import Coordinate, Stop


def coordinate_token(coordinate: Coordinate) -> str:
    lat, lon = coordinate
    return f"{lat:.6f},{lon:.6f}"


def coordinate_tokens(stops: Iterable[Stop]) -> frozenset[str]:
    return frozenset(coordinate_token(stop.coordinate) for stop in stops)


def segment_key(start: Coordinate, end: Coordinate) -> str:
    """Direction-free key: A->B and B->A share an entry."""
    return "|".join(sorted((coordinate_token(start), coordinate_token(end))))


def route_key(stops: Iterable[Stop]) -> str:
    """Order-independent key for a whole stop set."""
    return "|".join(sorted(coordinate_token(stop.coordinate) for stop in stops))
