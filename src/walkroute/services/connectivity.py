"""Network reachability checks consulted before any directions request."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Protocol

import httpx

from ..config import Settings, settings

logger = logging.getLogger(__name__)


class ConnectivityProbe(Protocol):
    def is_online(self) -> bool:
        ...


class StaticConnectivityProbe:
    """Always reports the same reachability."""

    def __init__(self, online: bool = True) -> None:
        self.online = online

    def is_online(self) -> bool:
        return self.online


class HttpConnectivityProbe:
    """Reports online when ``url`` answers a HEAD request at all.

    Any HTTP status counts as reachable; only transport failures mean offline.
    The answer is memoized for ``cache_seconds`` to keep repeated checks cheap.
    """

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        cache_seconds: float | None = None,
        clock: Callable[[], float] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url or settings.connectivity_check_url or settings.osrm_base_url
        self.timeout = timeout if timeout is not None else settings.connectivity_timeout_seconds
        self.cache_seconds = cache_seconds if cache_seconds is not None else settings.connectivity_cache_seconds
        self._clock = clock or time.monotonic
        self._transport = transport
        self._lock = threading.Lock()
        self._last_checked: float | None = None
        self._last_result = False

    def is_online(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._last_checked is not None and now - self._last_checked < self.cache_seconds:
                return self._last_result
            self._last_result = self._probe()
            self._last_checked = now
            return self._last_result

    def _probe(self) -> bool:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                client.head(self.url)
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Connectivity check against {self.url} failed: {e}")
            return False


def build_connectivity_probe(config: Settings | None = None) -> ConnectivityProbe:
    config = config or settings
    if not config.connectivity_check:
        return StaticConnectivityProbe(online=True)
    return HttpConnectivityProbe(
        url=config.connectivity_check_url or config.osrm_base_url,
        timeout=config.connectivity_timeout_seconds,
        cache_seconds=config.connectivity_cache_seconds,
    )
