"""Failures raised by the route optimization engine."""

from __future__ import annotations


class RouteOptimizationError(Exception):
    """Base class for optimization failures surfaced to callers."""

    user_message = "Failed to optimize route. Please try again."

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.user_message
        super().__init__(self.detail)


class InvalidLocations(RouteOptimizationError, ValueError):
    """Too few/too many stops, or a stop with an unusable coordinate."""

    user_message = "Invalid or insufficient locations for optimization."


class NetworkUnavailable(RouteOptimizationError, ConnectionError):
    user_message = "No internet connection available. Please check your connection and try again."


class OptimizationFailed(RouteOptimizationError):
    """The engine produced an inconsistent route; callers should keep their previous order."""

    user_message = "Unable to optimize route. Please try again."


class DirectionsFetchFailed(RouteOptimizationError):
    """A single directions request failed. Absorbed per segment, never surfaced by ``optimize``."""

    user_message = "Unable to fetch walking directions."


def describe_error(error: BaseException) -> str:
    """Return the one-line message a client should display for ``error``."""
    if isinstance(error, RouteOptimizationError):
        return error.user_message
    message = str(error).strip()
    return message or "An unknown error occurred"
