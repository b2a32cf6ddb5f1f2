"""Routing endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, status

from ...config import settings
from ...schemas.routing import CachedRouteRequest, CachedRouteResponse, OptimizeRequest, OptimizeResponse
from ...services.geospatial import bounding_region
from ...services.routing.errors import (
    InvalidLocations,
    NetworkUnavailable,
    OptimizationFailed,
    describe_error,
)
from ...services.routing.service import RouteOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/routes", tags=["routes"])


def _orchestrator(request: Request) -> RouteOrchestrator:
    return request.app.state.orchestrator


@router.post("/optimize", response_model=OptimizeResponse, status_code=status.HTTP_200_OK)
async def optimize(payload: OptimizeRequest, request: Request) -> OptimizeResponse:
    stops = [stop.to_domain() for stop in payload.stops]
    config = payload.config.to_domain() if payload.config else None
    try:
        result = await _orchestrator(request).optimize(stops, config)
    except InvalidLocations as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=describe_error(exc)) from exc
    except NetworkUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=describe_error(exc)) from exc
    except OptimizationFailed as exc:
        logger.error(f"Error optimizing route: {exc.detail}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=describe_error(exc),
        ) from exc

    region = bounding_region(
        result.stops,
        user_location=payload.user_location,
        span_multiplier=settings.region_span_multiplier,
    )
    return OptimizeResponse.from_result(result, region)


@router.post("/cached", response_model=CachedRouteResponse, status_code=status.HTTP_200_OK)
def has_cached_route(payload: CachedRouteRequest, request: Request) -> CachedRouteResponse:
    stops = [stop.to_domain() for stop in payload.stops]
    return CachedRouteResponse(cached=_orchestrator(request).has_cached_route(stops))


@router.delete("/cache", status_code=status.HTTP_200_OK)
def clear_cache(request: Request) -> dict:
    """Drop cached routes and segments, e.g. after the stop list was edited."""
    _orchestrator(request).clear_cache()
    return {"cleared": True}
