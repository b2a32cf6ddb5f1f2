"""Routing request/response schemas."""

from __future__ import annotations

from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from ..config import settings
from ..services.routing.models import Region, RouteConfig, RouteResult, Stop


class StopModel(BaseModel):
    name: str
    latitude: float
    longitude: float
    order: int = 0

    def to_domain(self) -> Stop:
        return Stop(name=self.name, latitude=self.latitude, longitude=self.longitude, order=self.order)


class RouteConfigModel(BaseModel):
    walking_speed_mps: Optional[float] = Field(None, gt=0)
    prioritize_fewer_turns: bool = False
    max_iterations: Optional[int] = Field(None, ge=0)

    def to_domain(self) -> RouteConfig:
        return RouteConfig(
            walking_speed_mps=self.walking_speed_mps
            if self.walking_speed_mps is not None
            else settings.walking_speed_mps,
            prioritize_fewer_turns=self.prioritize_fewer_turns,
            max_iterations=self.max_iterations
            if self.max_iterations is not None
            else settings.max_optimization_iterations,
        )


class OptimizeRequest(BaseModel):
    stops: List[StopModel] = Field(..., description="Stops to visit; the first one is the starting point.")
    config: Optional[RouteConfigModel] = None
    user_location: Optional[Tuple[float, float]] = Field(
        default=None,
        description="Current (lat, lon) of the walker, used to frame the returned map region.",
    )


class CachedRouteRequest(BaseModel):
    stops: List[StopModel]


class RouteStatisticsModel(BaseModel):
    total_distance_m: float
    estimated_duration_s: float
    elevation_gain_m: float
    turn_count: int
    average_segment_length_m: float


class RegionModel(BaseModel):
    center_latitude: float
    center_longitude: float
    latitude_delta: float
    longitude_delta: float


class OptimizeResponse(BaseModel):
    stops: List[StopModel]
    tour: List[int]
    path: List[Tuple[float, float]]
    statistics: RouteStatisticsModel
    summary: str
    fallback_segments: int
    region: RegionModel

    @classmethod
    def from_result(cls, result: RouteResult, region: Region) -> OptimizeResponse:
        stats = result.statistics
        return cls(
            stops=[
                StopModel(name=stop.name, latitude=stop.latitude, longitude=stop.longitude, order=stop.order)
                for stop in result.reindexed_stops()
            ],
            tour=list(result.tour),
            path=[tuple(point) for point in result.path],
            statistics=RouteStatisticsModel(
                total_distance_m=stats.total_distance_m,
                estimated_duration_s=stats.estimated_duration_s,
                elevation_gain_m=stats.elevation_gain_m,
                turn_count=stats.turn_count,
                average_segment_length_m=stats.average_segment_length_m,
            ),
            summary=stats.format(),
            fallback_segments=result.fallback_segments,
            region=RegionModel(
                center_latitude=region.center_latitude,
                center_longitude=region.center_longitude,
                latitude_delta=region.latitude_delta,
                longitude_delta=region.longitude_delta,
            ),
        )


class CachedRouteResponse(BaseModel):
    cached: bool
