"""Error taxonomy for fleet location resolution."""
from __future__ import annotations

from enum import Enum


class ResolutionFailure(str, Enum):
    """Reasons a single address produced no marker."""

    ADDRESS_MISSING = "address_missing"
    NETWORK_ERROR = "network_error"
    NO_MATCH = "no_match"


class FleetFetchError(RuntimeError):
    """Raised when the fleet-status endpoint cannot supply a unit list."""

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def as_dict(self) -> dict:
        """Return a serializable representation."""
        payload = {"message": str(self)}
        if self.details:
            payload["details"] = self.details
        return payload


class CacheUnreadable(ValueError):
    """Raised by a cache store whose persisted payload cannot be decoded."""
