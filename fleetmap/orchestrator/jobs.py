"""Work items for a resolution batch and their lifecycle."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from fleetmap.errors import ResolutionFailure
from fleetmap.storage.models import Location, Unit


@dataclass
class WorkItem:
    """One (unit, location) pair awaiting resolution."""

    index: int
    unit: Unit
    location: Location
    status: str = "pending"
    failure: Optional[ResolutionFailure] = None

    def mark_resolved(self) -> None:
        """Record a successful resolution."""
        self._require_pending()
        self.status = "resolved"

    def mark_skipped(self, reason: ResolutionFailure) -> None:
        """Record that the pair produced no marker."""
        self._require_pending()
        self.status = "skipped"
        self.failure = reason

    def _require_pending(self) -> None:
        if self.status != "pending":
            raise RuntimeError(f"work item {self.index} already {self.status}")


class CancellationToken:
    """Liveness flag checked by the batch worker before each new pair."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
