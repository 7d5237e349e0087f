"""Models for fleet units, resolved coordinates and map markers."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from fleetmap.errors import ResolutionFailure

UnitStatus = Literal["healthy", "needs_repair"]
Tier = Literal["skipped", "static", "cache", "geocode"]


class Location(BaseModel):
    """A customer address attached to a unit."""

    model_config = ConfigDict(frozen=True)

    address: Optional[str] = None
    customer_name: str = ""
    customer_id: Optional[str] = None

    @field_validator("customer_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> Optional[str]:
        if value is None:
            return None
        return str(value)


class Unit(BaseModel):
    """A fleet unit as reported by the fleet-status endpoint."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "machine_id"))
    status: UnitStatus
    locations: Tuple[Location, ...] = ()

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("locations", mode="before")
    @classmethod
    def _default_locations(cls, value: object) -> object:
        return () if value is None else value

    @property
    def has_multiple_locations(self) -> bool:
        return len(self.locations) > 1


@dataclass(frozen=True, slots=True)
class Coordinates:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lng: float

    @classmethod
    def from_candidate(cls, candidate: Mapping[str, object]) -> "Coordinates":
        """Build coordinates from a geocoder candidate with numeric or string fields."""
        lat = float(candidate["lat"])  # type: ignore[arg-type]
        lng = float(candidate.get("lon", candidate.get("lng")))  # type: ignore[arg-type]
        if not (math.isfinite(lat) and math.isfinite(lng)):
            raise ValueError(f"non-finite coordinates: {lat}, {lng}")
        return cls(lat=lat, lng=lng)

    def as_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True, slots=True)
class Unresolved:
    """Explicit failure value returned instead of raising."""

    reason: ResolutionFailure
    detail: str = ""


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A persisted address resolution."""

    address: str
    lat: float
    lng: float

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)


class ResolvedMarker(BaseModel):
    """A map-displayable record pairing a unit's status with a resolved position."""

    model_config = ConfigDict(frozen=True)

    unit_id: str
    status: UnitStatus
    lat: float
    lng: float
    location: Location

    @classmethod
    def build(cls, unit: Unit, location: Location, coordinates: Coordinates) -> "ResolvedMarker":
        return cls(
            unit_id=unit.id,
            status=unit.status,
            lat=coordinates.lat,
            lng=coordinates.lng,
            location=location,
        )

    def to_feature(self) -> Dict[str, object]:
        """Render the marker as a GeoJSON point feature."""
        return {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [self.lng, self.lat]},
            "properties": {
                "unit_id": self.unit_id,
                "status": self.status,
                "customer_name": self.location.customer_name,
                "customer_id": self.location.customer_id,
                "address": self.location.address,
            },
        }


@dataclass(frozen=True, slots=True)
class Progress:
    """Count of processed (unit, location) pairs against the batch total."""

    current: int
    total: int

    def advance(self) -> "Progress":
        if self.current >= self.total:
            raise ValueError("progress already complete")
        return Progress(current=self.current + 1, total=self.total)

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 100
        return round(self.current / self.total * 100)


@dataclass(frozen=True, slots=True)
class BatchSnapshot:
    """Markers resolved so far together with batch progress."""

    markers: Tuple[ResolvedMarker, ...]
    progress: Progress

    @property
    def done(self) -> bool:
        return self.progress.current == self.progress.total

    def as_dict(self) -> Dict[str, object]:
        return {
            "progress": {"current": self.progress.current, "total": self.progress.total},
            "markers": [marker.model_dump() for marker in self.markers],
        }


@dataclass(slots=True)
class FleetStats:
    """Unit counts by operational status."""

    healthy: int = 0
    needs_repair: int = 0
    total: int = 0
    locations: int = 0
    multi_location_units: List[str] = field(default_factory=list)


def summarise_units(units: Iterable[Unit]) -> FleetStats:
    """Count units by status, mirroring the dashboard's header badges."""
    stats = FleetStats()
    for unit in units:
        stats.total += 1
        stats.locations += len(unit.locations)
        if unit.status == "healthy":
            stats.healthy += 1
        else:
            stats.needs_repair += 1
        if unit.has_multiple_locations:
            stats.multi_location_units.append(unit.id)
    return stats
