"""Route and segment caches."""

from .keys import route_key, segment_key
from .routes import RouteCache
from .segments import CachedSegment, SegmentCache
from .ttl import TTLCache

__all__ = [
    "RouteCache",
    "SegmentCache",
    "CachedSegment",
    "TTLCache",
    "route_key",
    "segment_key",
]
