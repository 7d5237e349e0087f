"""Writers for map output and run manifests."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Optional

import orjson

from fleetmap.storage.layout import DataLayout
from fleetmap.storage.models import BatchSnapshot, FleetStats, ResolvedMarker


def feature_collection(markers: Iterable[ResolvedMarker]) -> Dict[str, object]:
    return {"type": "FeatureCollection", "features": [marker.to_feature() for marker in markers]}


def _write_atomic(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_bytes(data)
    tmp.replace(path)
    return path


class MapWriter:
    """Persists the final snapshot of a run for the map surface."""

    def __init__(self, layout: DataLayout) -> None:
        self._layout = layout

    def write_markers(self, snapshot: Optional[BatchSnapshot], *, run_id: str) -> Path:
        """Write the run's markers as GeoJSON and refresh the `latest` copy."""
        markers = snapshot.markers if snapshot is not None else ()
        data = orjson.dumps(feature_collection(markers))
        path = _write_atomic(self._layout.markers_path(run_id), data)
        _write_atomic(self._layout.latest_markers_path(), data)
        return path

    def write_manifest(
        self,
        *,
        run_id: str,
        snapshot: Optional[BatchSnapshot],
        stats: FleetStats,
        counters: Dict[str, int],
        markers_path: Path,
    ) -> Path:
        progress = snapshot.progress if snapshot is not None else None
        payload = {
            "run_id": run_id,
            "progress": {
                "current": progress.current if progress else 0,
                "total": progress.total if progress else stats.locations,
            },
            "complete": bool(snapshot is not None and snapshot.done),
            "markers": len(snapshot.markers) if snapshot is not None else 0,
            "fleet": {
                "healthy": stats.healthy,
                "needs_repair": stats.needs_repair,
                "total": stats.total,
                "multi_location_units": stats.multi_location_units,
            },
            "paths": {"markers": str(markers_path)},
            "metrics": counters,
        }
        return _write_atomic(
            self._layout.manifest_path(run_id),
            orjson.dumps(payload, option=orjson.OPT_INDENT_2),
        )
