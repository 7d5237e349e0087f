"""Rate-limited client for the external geocoding service."""
from __future__ import annotations

import asyncio
import time
from typing import Optional

import httpx
import orjson
import structlog

from fleetmap.errors import ResolutionFailure
from fleetmap.fetch.clock import Clock, SystemClock
from fleetmap.fetch.session import HttpSession
from fleetmap.observability.metrics import MetricsRegistry
from fleetmap.observability.tracing import log_geocode_result, span
from fleetmap.storage.models import Coordinates, Unresolved

LOGGER = structlog.get_logger(__name__)

DEFAULT_SEARCH_URL = "https://nominatim.openstreetmap.org/search"
DEFAULT_MIN_INTERVAL = 0.8


class RateLimitedGeocodeClient:
    """Issues one geocoding request at a time, spaced by a minimum interval.

    The interval is measured between successive dispatches, so time spent
    waiting on a slow response counts toward the next request's spacing.
    Failures come back as :class:`Unresolved` values; nothing is raised to
    the caller.
    """

    def __init__(
        self,
        session: HttpSession,
        *,
        search_url: str = DEFAULT_SEARCH_URL,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        timeout: Optional[float] = None,
        clock: Optional[Clock] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be non-negative")
        self._session = session
        self._search_url = search_url
        self._min_interval = min_interval
        self._timeout = timeout
        self._clock = clock or SystemClock()
        self._metrics = metrics or MetricsRegistry()
        self._lock = asyncio.Lock()
        self._last_dispatch: Optional[float] = None

    async def _wait_for_slot(self) -> None:
        if self._last_dispatch is None:
            return
        remaining = self._min_interval - (self._clock.monotonic() - self._last_dispatch)
        if remaining > 0:
            LOGGER.debug("geocode_throttle", wait_ms=int(remaining * 1000))
            await self._clock.sleep(remaining)

    async def geocode(self, address: str) -> Coordinates | Unresolved:
        async with self._lock:
            await self._wait_for_slot()
            self._last_dispatch = self._clock.monotonic()
            self._metrics.record_tier("geocode")
            return await self._dispatch(address)

    async def _dispatch(self, address: str) -> Coordinates | Unresolved:
        params = {"format": "json", "q": address}
        try:
            with span(name="geocode", address=address):
                start = time.perf_counter()
                response = await self._session.get(self._search_url, params=params, timeout=self._timeout)
                response.raise_for_status()
                candidates = orjson.loads(response.content)
        except (httpx.HTTPError, orjson.JSONDecodeError) as exc:
            self._metrics.record_failure(ResolutionFailure.NETWORK_ERROR)
            LOGGER.warning("geocode_network_error", address=address, reason=str(exc))
            return Unresolved(ResolutionFailure.NETWORK_ERROR, str(exc))

        if not isinstance(candidates, list):
            self._metrics.record_failure(ResolutionFailure.NETWORK_ERROR)
            LOGGER.warning("geocode_network_error", address=address, reason="response is not a list")
            return Unresolved(ResolutionFailure.NETWORK_ERROR, "response is not a list")

        log_geocode_result(
            address=address,
            status=response.status_code,
            candidates=len(candidates),
            elapsed_ms=int((time.perf_counter() - start) * 1000),
        )
        if not candidates:
            self._metrics.record_failure(ResolutionFailure.NO_MATCH)
            LOGGER.info("geocode_no_match", address=address)
            return Unresolved(ResolutionFailure.NO_MATCH, "no candidates")

        first = candidates[0]
        try:
            if not isinstance(first, dict):
                raise TypeError(f"candidate is {type(first).__name__}")
            return Coordinates.from_candidate(first)
        except (KeyError, TypeError, ValueError) as exc:
            self._metrics.record_failure(ResolutionFailure.NO_MATCH)
            LOGGER.info("geocode_no_match", address=address, reason=f"unusable candidate: {exc}")
            return Unresolved(ResolutionFailure.NO_MATCH, f"unusable candidate: {exc}")
