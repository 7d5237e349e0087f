"""Interval loop that refreshes the fleet map, as the dashboard's refresh action does."""
from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional

import httpx
import structlog

from fleetmap.errors import FleetFetchError
from fleetmap.fetch.clock import Clock, SystemClock
from fleetmap.storage.models import BatchSnapshot

LOGGER = structlog.get_logger(__name__)


async def run_refresh_loop(
    settings: Dict[str, object],
    *,
    source: str,
    interval_seconds: int = 300,
    ticks: Optional[int] = None,
    sink: Optional[Callable[[BatchSnapshot], None]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Optional[Clock] = None,
) -> List[str]:
    """Run `locate` every `interval_seconds`, sharing one cache and rate limiter.

    Returns the run ids that completed. A failed fleet fetch skips the tick.
    """
    from fleetmap.main import locate_once, new_run_id, open_pipeline

    clock = clock or SystemClock()
    completed: List[str] = []
    async with open_pipeline(settings, transport=transport, clock=clock) as pipeline:
        tick = 0
        while ticks is None or tick < ticks:
            run_id = f"{new_run_id()}-t{tick}"
            try:
                await locate_once(pipeline, settings, source=source, run_id=run_id, sink=sink)
            except FleetFetchError as exc:
                LOGGER.error("refresh_tick_failed", run_id=run_id, reason=str(exc), details=exc.details)
            else:
                completed.append(run_id)
            tick += 1
            if ticks is None or tick < ticks:
                await clock.sleep(interval_seconds)
    return completed
