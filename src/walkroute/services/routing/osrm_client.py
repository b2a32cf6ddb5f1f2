"""HTTP client for walking directions from an OSRM service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from ...config import settings
from .errors import DirectionsFetchFailed
from .models import Coordinate

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WalkingPath:
    distance_m: float
    path: tuple[Coordinate, ...]


class DirectionsClient(Protocol):
    async def fetch_walking_path(self, start: Coordinate, end: Coordinate) -> WalkingPath:
        """Return the walked path between two points or raise ``DirectionsFetchFailed``."""
        ...


class OSRMDirectionsClient:
    """Single-attempt OSRM ``route`` client.

    Retrying is left to the caller, which decides how many attempts a
    segment deserves and what to do once they are exhausted.
    """

    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.osrm_base_url).rstrip("/")
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile
        self.timeout = timeout if timeout is not None else settings.directions_timeout_seconds
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 5.0)),
            headers={"User-Agent": f"{settings.app_name}"},
        )

    async def __aenter__(self) -> OSRMDirectionsClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def route_url(self, start: Coordinate, end: Coordinate) -> str:
        # OSRM expects "lon,lat;lon,lat"
        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in (start, end))
        return f"{self.base_url}/route/v1/{self.profile}/{coordinate_str}"

    async def fetch_walking_path(self, start: Coordinate, end: Coordinate) -> WalkingPath:
        params = {
            "overview": "full",
            "geometries": "polyline",
            "steps": "false",
        }
        url = self.route_url(start, end)
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise DirectionsFetchFailed(
                f"OSRM route request returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise DirectionsFetchFailed(f"Failed to reach OSRM service at {self.base_url}: {e}") from e
        except ValueError as e:
            raise DirectionsFetchFailed(f"OSRM returned malformed JSON: {e}") from e

        if data.get("code") != "Ok":
            error_msg = data.get("message", "Unknown OSRM route error")
            raise DirectionsFetchFailed(f"OSRM route request failed: {error_msg}")

        routes = data.get("routes") or []
        if not routes:
            raise DirectionsFetchFailed("OSRM returned no walking route.")

        route = routes[0]
        try:
            distance = float(route["distance"])
            path = tuple(decode_polyline(route["geometry"]))
        except (KeyError, TypeError, ValueError, IndexError) as e:
            raise DirectionsFetchFailed(f"OSRM route payload is incomplete: {e}") from e

        if not path:
            raise DirectionsFetchFailed("OSRM route geometry is empty.")

        logger.debug(f"Found walking path {start} -> {end}: {distance:.0f}m, {len(path)} points")
        return WalkingPath(distance_m=distance, path=path)


def decode_polyline(polyline: str) -> list[tuple[float, float]]:
    """Decode Google polyline string to list of (lat, lon) coordinates.

    OSRM uses Google's polyline encoding format for route geometry.
    """
    coordinates = []
    index = 0
    lat = 0
    lon = 0

    while index < len(polyline):
        deltas = []
        for _ in range(2):
            shift = 0
            result = 0
            while True:
                b = ord(polyline[index]) - 63
                index += 1
                result |= (b & 0x1f) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(result >> 1) if (result & 1) else (result >> 1))
        lat += deltas[0]
        lon += deltas[1]
        coordinates.append((lat / 1e5, lon / 1e5))

    return coordinates


def check_health(base_url: str | None = None) -> bool:
    """Check OSRM service health by routing between two nearby points.

    Public OSRM endpoints may not have a /health endpoint, so we test
    connectivity by making a minimal route request.
    """
    base = (base_url or settings.osrm_base_url).rstrip("/")
    if not base:
        return False
    try:
        # Two points in central Berlin
        test_coords = "13.388860,52.517037;13.385983,52.496891"
        url = f"{base}/route/v1/{settings.osrm_profile}/{test_coords}"
        response = httpx.get(url, params={"overview": "false"}, timeout=5.0)
        response.raise_for_status()
        data = response.json()
        return data.get("code") == "Ok"
    except (httpx.HTTPError, ValueError):
        return False
