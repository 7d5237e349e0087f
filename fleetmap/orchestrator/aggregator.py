"""Sequential batch resolution that republishes markers as they resolve."""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, List, Optional, Sequence

import structlog

from fleetmap.geo.resolver import AddressResolver
from fleetmap.observability.metrics import MetricsRegistry
from fleetmap.orchestrator.jobs import CancellationToken, WorkItem
from fleetmap.orchestrator.queue import WorkQueue
from fleetmap.storage.models import BatchSnapshot, Coordinates, Progress, ResolvedMarker, Unit

LOGGER = structlog.get_logger(__name__)


class BatchAggregator:
    """Walks (unit, location) pairs in order and emits a snapshot after each one.

    A single worker task drains the work queue, so no two pairs are ever
    resolved at once. Every snapshot carries the full marker list so far;
    the last one has ``progress.current == progress.total`` unless the run
    was cancelled.
    """

    def __init__(self, resolver: AddressResolver, *, metrics: Optional[MetricsRegistry] = None) -> None:
        self._resolver = resolver
        self._metrics = metrics or MetricsRegistry()

    async def run(
        self,
        units: Sequence[Unit],
        *,
        token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[BatchSnapshot]:
        token = token or CancellationToken()
        queue = WorkQueue.from_units(units)
        outbox: asyncio.Queue[Optional[BatchSnapshot]] = asyncio.Queue()
        LOGGER.info("batch_started", units=len(units), total=queue.total)
        worker = asyncio.create_task(self._drain(queue, outbox, token))
        try:
            while True:
                snapshot = await outbox.get()
                if snapshot is None:
                    break
                yield snapshot
        finally:
            token.cancel()
            # Lets an in-flight pair finish; its snapshot is never yielded.
            await worker

    async def _drain(
        self,
        queue: WorkQueue,
        outbox: asyncio.Queue[Optional[BatchSnapshot]],
        token: CancellationToken,
    ) -> None:
        markers: List[ResolvedMarker] = []
        progress = Progress(current=0, total=queue.total)
        try:
            if queue.total == 0:
                outbox.put_nowait(BatchSnapshot(markers=(), progress=progress))
            while not queue.empty():
                if token.cancelled:
                    LOGGER.info("batch_cancelled", current=progress.current, total=progress.total)
                    return
                item = queue.next()
                marker = await self._process(item)
                if token.cancelled:
                    LOGGER.info(
                        "batch_cancelled",
                        current=progress.current,
                        total=progress.total,
                        discarded=item.index,
                    )
                    return
                progress = progress.advance()
                self._metrics.record_pair(resolved=marker is not None)
                if marker is not None:
                    markers.append(marker)
                outbox.put_nowait(BatchSnapshot(markers=tuple(markers), progress=progress))
                # Let the consumer render before the next pair starts.
                await asyncio.sleep(0)
            LOGGER.info("batch_finished", markers=len(markers), total=progress.total)
        finally:
            outbox.put_nowait(None)

    async def _process(self, item: WorkItem) -> Optional[ResolvedMarker]:
        result = await self._resolver.resolve(item.location.address)
        if isinstance(result, Coordinates):
            item.mark_resolved()
            return ResolvedMarker.build(item.unit, item.location, result)
        item.mark_skipped(result.reason)
        LOGGER.debug(
            "pair_skipped",
            unit_id=item.unit.id,
            address=item.location.address,
            reason=result.reason.value,
        )
        return None


async def collect_final(
    aggregator: BatchAggregator,
    units: Sequence[Unit],
    *,
    token: Optional[CancellationToken] = None,
) -> Optional[BatchSnapshot]:
    """Drain a run and return its last snapshot, or None when cancelled before the first."""
    last: Optional[BatchSnapshot] = None
    async for snapshot in aggregator.run(units, token=token):
        last = snapshot
    return last
