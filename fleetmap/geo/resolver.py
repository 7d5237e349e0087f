"""Tiered address resolution: static table, then cache, then the geocoder."""
from __future__ import annotations

import asyncio
from typing import Dict, Optional

import structlog

from fleetmap.errors import ResolutionFailure
from fleetmap.fetch.geocoder import RateLimitedGeocodeClient
from fleetmap.geo.cache import ResolutionCache
from fleetmap.geo.static_table import StaticLookupTable
from fleetmap.observability.metrics import MetricsRegistry
from fleetmap.storage.models import Coordinates, Tier, Unresolved

LOGGER = structlog.get_logger(__name__)


class AddressResolver:
    """Maps a free-text address to coordinates through three tiers.

    Addresses are matched by exact string equality in every tier. A
    successful geocode is written to the cache before it is returned, so a
    later call for the same address stops at the cache tier.
    """

    def __init__(
        self,
        *,
        static_table: StaticLookupTable,
        cache: ResolutionCache,
        geocoder: RateLimitedGeocodeClient,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._static = static_table
        self._cache = cache
        self._geocoder = geocoder
        self._metrics = metrics or MetricsRegistry()
        # Per-address locks with their waiter counts; dropped once nobody holds them.
        self._address_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @property
    def cache(self) -> ResolutionCache:
        return self._cache

    def tier_for(self, address: Optional[str]) -> Tier:
        """Report which tier would answer for `address` without doing any I/O."""
        if not address or not address.strip():
            return "skipped"
        if address in self._static:
            return "static"
        if address in self._cache:
            return "cache"
        return "geocode"

    def lookup_local(self, address: str) -> Optional[Coordinates]:
        """Static or cached coordinates for `address`, without counting hits."""
        return self._static.get(address) or self._cache.get(address)

    async def resolve(self, address: Optional[str]) -> Coordinates | Unresolved:
        if not address or not address.strip():
            self._metrics.record_failure(ResolutionFailure.ADDRESS_MISSING)
            LOGGER.debug("address_missing")
            return Unresolved(ResolutionFailure.ADDRESS_MISSING, "blank address")

        hit = self._static.get(address)
        if hit is not None:
            self._metrics.record_tier("static")
            return hit

        hit = self._cache.get(address)
        if hit is not None:
            self._metrics.record_tier("cache")
            return hit

        lock = self._address_locks.setdefault(address, asyncio.Lock())
        self._lock_users[address] = self._lock_users.get(address, 0) + 1
        try:
            async with lock:
                # Another resolve() may have filled the cache while we waited.
                hit = self._cache.get(address)
                if hit is not None:
                    self._metrics.record_tier("cache")
                    return hit
                result = await self._geocoder.geocode(address)
                if isinstance(result, Coordinates):
                    await self._cache.put(address, result)
                    LOGGER.info("address_geocoded", address=address, lat=result.lat, lng=result.lng)
                return result
        finally:
            self._lock_users[address] -= 1
            if not self._lock_users[address]:
                del self._lock_users[address]
                del self._address_locks[address]
