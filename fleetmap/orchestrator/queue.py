"""FIFO queue of work items for a single resolution batch."""
from __future__ import annotations

import asyncio
from typing import Iterable, List

from fleetmap.orchestrator.jobs import WorkItem
from fleetmap.storage.models import Unit


def plan_work(units: Iterable[Unit]) -> List[WorkItem]:
    """Flatten units into (unit, location) work items in input order."""
    items: List[WorkItem] = []
    for unit in units:
        for location in unit.locations:
            items.append(WorkItem(index=len(items), unit=unit, location=location))
    return items


class WorkQueue:
    """In-memory FIFO whose size is fixed once the batch is planned."""

    def __init__(self, items: Iterable[WorkItem]) -> None:
        self._queue: asyncio.Queue[WorkItem] = asyncio.Queue()
        for item in items:
            self._queue.put_nowait(item)
        self._total = self._queue.qsize()

    @classmethod
    def from_units(cls, units: Iterable[Unit]) -> "WorkQueue":
        return cls(plan_work(units))

    @property
    def total(self) -> int:
        return self._total

    def next(self) -> WorkItem:
        """Return the next pending item; raises `asyncio.QueueEmpty` when drained."""
        item = self._queue.get_nowait()
        self._queue.task_done()
        return item

    def empty(self) -> bool:
        """Return True when no items remain."""
        return self._queue.empty()

    def remaining(self) -> int:
        return self._queue.qsize()
