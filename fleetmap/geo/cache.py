"""Disk-backed resolution cache for geocoded addresses."""
from __future__ import annotations

import asyncio
import math
from pathlib import Path
from typing import Dict, List, Optional, Protocol

import orjson
import structlog

from fleetmap.errors import CacheUnreadable
from fleetmap.storage.models import CacheEntry, Coordinates

LOGGER = structlog.get_logger(__name__)

GEO_CACHE_KEY = "geo_cache"


class CacheStore(Protocol):
    """Durable key-value backing for the resolution cache."""

    def read(self) -> Dict[str, Dict[str, float]]:
        """Return the persisted map; raise CacheUnreadable when it cannot be decoded."""

    def write(self, payload: Dict[str, Dict[str, float]]) -> None:
        """Replace the persisted map with the supplied payload."""


class JsonFileCacheStore:
    """Stores the cache as one flat JSON object keyed by address."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @classmethod
    def in_directory(cls, cache_dir: Path) -> "JsonFileCacheStore":
        return cls(cache_dir / f"{GEO_CACHE_KEY}.json")

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> Dict[str, Dict[str, float]]:
        if not self._path.exists():
            return {}
        try:
            payload = orjson.loads(self._path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as exc:
            raise CacheUnreadable(str(exc)) from exc
        if not isinstance(payload, dict):
            raise CacheUnreadable(f"expected an object, got {type(payload).__name__}")
        return payload

    def write(self, payload: Dict[str, Dict[str, float]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_bytes(orjson.dumps(payload))
        tmp.replace(self._path)


def _coerce_entry(address: str, value: object) -> Optional[CacheEntry]:
    if not isinstance(value, dict):
        return None
    try:
        lat = float(value["lat"])
        lng = float(value["lng"])
    except (KeyError, TypeError, ValueError):
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    return CacheEntry(address=address, lat=lat, lng=lng)


class ResolutionCache:
    """In-memory view of previously resolved addresses, written through to a store.

    The whole map is read once by :meth:`load` and rewritten on every
    successful :meth:`put`. Entries are never evicted and never replaced.
    A store that fails to write is logged as ``cache_write_failed``; the
    entry still serves lookups and the next put or :meth:`flush` retries
    the write.
    """

    def __init__(self, store: CacheStore) -> None:
        self._store = store
        self._entries: Dict[str, CacheEntry] = {}
        self._loaded = False
        self._lock = asyncio.Lock()

    def load(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        try:
            payload = self._store.read()
        except CacheUnreadable as exc:
            LOGGER.warning("cache_unreadable", reason=str(exc))
            return
        dropped = 0
        for address, value in payload.items():
            entry = _coerce_entry(address, value)
            if entry is None:
                dropped += 1
                continue
            self._entries[address] = entry
        if dropped:
            LOGGER.warning("cache_entries_dropped", dropped=dropped)
        LOGGER.info("cache_loaded", entries=len(self._entries))

    def get(self, address: str) -> Optional[Coordinates]:
        entry = self._entries.get(address)
        if entry is None:
            return None
        return entry.coordinates

    async def put(self, address: str, coordinates: Coordinates) -> None:
        async with self._lock:
            if address in self._entries:
                return
            self._entries[address] = CacheEntry(address=address, lat=coordinates.lat, lng=coordinates.lng)
            await self._persist()

    async def flush(self) -> bool:
        async with self._lock:
            return await self._persist()

    async def _persist(self) -> bool:
        # The in-memory entry stays either way; the next write carries the full map.
        payload = {address: {"lat": entry.lat, "lng": entry.lng} for address, entry in self._entries.items()}
        try:
            await asyncio.to_thread(self._store.write, payload)
        except OSError as exc:
            LOGGER.warning("cache_write_failed", entries=len(payload), reason=str(exc))
            return False
        return True

    def entries(self) -> List[CacheEntry]:
        return list(self._entries.values())

    def __contains__(self, address: object) -> bool:
        return address in self._entries

    def __len__(self) -> int:
        return len(self._entries)
