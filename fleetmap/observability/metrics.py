"""Resolution counters, kept per run and for the life of the process."""
from __future__ import annotations

import contextlib
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, Optional

import orjson
import structlog

from fleetmap.errors import ResolutionFailure
from fleetmap.storage.models import Tier

LOGGER = structlog.get_logger(__name__)

# Blank addresses never reach a tier; they are counted by their failure.
TIER_COUNTERS: Dict[Tier, str] = {
    "static": "static_hits",
    "cache": "cache_hits",
    "geocode": "geocode_requests",
}
FAILURE_COUNTERS: Dict[ResolutionFailure, str] = {
    ResolutionFailure.ADDRESS_MISSING: "addresses_missing",
    ResolutionFailure.NO_MATCH: "geocode_no_match",
    ResolutionFailure.NETWORK_ERROR: "geocode_network_errors",
}
COUNTER_NAMES = (
    "pairs_processed",
    "markers_resolved",
    *TIER_COUNTERS.values(),
    *FAILURE_COUNTERS.values(),
    "run_duration_ms",
)


def _zeroed() -> Dict[str, int]:
    return dict.fromkeys(COUNTER_NAMES, 0)


class MetricsRegistry:
    """Counts how each (unit, location) pair was answered.

    Every event lands in two views: the current run, reset by
    :meth:`begin_run`, and the process totals. Under ``watch`` each tick's
    export therefore describes that tick alone while the totals keep growing.
    """

    def __init__(self) -> None:
        self.run_id: Optional[str] = None
        self._run = _zeroed()
        self._totals = _zeroed()

    def begin_run(self, run_id: str) -> None:
        self.run_id = run_id
        self._run = _zeroed()

    def _bump(self, name: str, value: int = 1) -> None:
        self._run[name] += value
        self._totals[name] += value

    def record_tier(self, tier: Tier) -> None:
        """Count a lookup answered by the static table or cache, or sent to the geocoder."""
        self._bump(TIER_COUNTERS[tier])

    def record_failure(self, reason: ResolutionFailure) -> None:
        self._bump(FAILURE_COUNTERS[reason])

    def record_pair(self, *, resolved: bool) -> None:
        self._bump("pairs_processed")
        if resolved:
            self._bump("markers_resolved")

    @contextlib.contextmanager
    def timed_run(self) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            self._bump("run_duration_ms", elapsed_ms)
            LOGGER.info("run_timed", run_id=self.run_id, duration_ms=elapsed_ms)

    def get(self, name: str) -> int:
        """Process-wide total for `name`."""
        return self._totals.get(name, 0)

    def run_counters(self) -> Dict[str, int]:
        return dict(self._run)

    def totals(self) -> Dict[str, int]:
        return dict(self._totals)

    def export(self, directory: Path) -> Path:
        """Write ``run_<run_id>.json`` holding this run's counters and the running totals."""
        if self.run_id is None:
            raise RuntimeError("begin_run() must be called before export()")
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"run_{self.run_id}.json"
        payload = {
            "run_id": self.run_id,
            "counters": self.run_counters(),
            "totals": self.totals(),
            "generated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
        return path
