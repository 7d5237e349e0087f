"""Fixed coordinates for the seed and demo addresses."""
from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence, Tuple

from fleetmap.storage.models import Coordinates

SEED_LOCATIONS: Dict[str, Tuple[float, float]] = {
    "123 Main St, Springfield, IL": (39.7817, -89.6501),
    "456 Oak Ave, Chicago, IL": (41.8781, -87.6298),
    "789 Pine Rd, Boston, MA": (42.3601, -71.0589),
    "321 Elm St, Seattle, WA": (47.6062, -122.3321),
    "654 Maple Dr, Austin, TX": (30.2672, -97.7431),
    "987 Cedar Ln, Denver, CO": (39.7392, -104.9903),
    "159 Birch Blvd, Portland, OR": (45.5152, -122.6784),
    "753 Willow Way, Miami, FL": (25.7617, -80.1918),
    # Placeholder "City, Country" rows in the seed data are pinned around Manila.
    "123 Admin Street, City, Country": (14.5995, 120.9842),
    "100 Staff Street, City, Country": (14.6091, 121.0223),
    "200 Staff Ave, City, Country": (14.6507, 121.0494),
    "300 Staff Blvd, City, Country": (14.5547, 121.0244),
}


class StaticLookupTable:
    """In-memory address lookup consulted before any cache or network tier."""

    def __init__(self, mapping: Mapping[str, Tuple[float, float]] | None = None) -> None:
        source = SEED_LOCATIONS if mapping is None else mapping
        self._table: Dict[str, Coordinates] = {
            address: Coordinates(lat=float(lat), lng=float(lng)) for address, (lat, lng) in source.items()
        }

    @classmethod
    def from_settings(cls, settings: Mapping[str, object]) -> "StaticLookupTable":
        """Seed table extended with `[static_locations]` entries from settings."""
        extra = settings.get("static_locations") or {}
        merged: Dict[str, Tuple[float, float]] = dict(SEED_LOCATIONS)
        for address, pair in dict(extra).items():  # type: ignore[call-overload]
            if not isinstance(pair, Sequence) or len(pair) != 2:
                raise ValueError(f"static location {address!r} must be a [lat, lng] pair")
            merged[str(address)] = (float(pair[0]), float(pair[1]))
        return cls(merged)

    def get(self, address: str) -> Optional[Coordinates]:
        return self._table.get(address)

    def __contains__(self, address: object) -> bool:
        return address in self._table

    def __len__(self) -> int:
        return len(self._table)
