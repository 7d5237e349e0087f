"""Path helpers for cache, map output, manifest and metrics directories."""
from __future__ import annotations

from pathlib import Path
from typing import Dict


class DataLayout:
    """Computes structured output paths inside the data root."""

    def __init__(
        self,
        *,
        cache: Path,
        maps: Path,
        manifests: Path,
        metrics: Path,
    ) -> None:
        self.cache = cache
        self.maps = maps
        self.manifests = manifests
        self.metrics = metrics
        for path in (cache, maps, manifests, metrics):
            path.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(cls, settings: Dict[str, object]) -> "DataLayout":
        app = settings["app"]
        return cls(
            cache=Path(app["cache_dir"]),  # type: ignore[index]
            maps=Path(app["maps_dir"]),  # type: ignore[index]
            manifests=Path(app["manifest_dir"]),  # type: ignore[index]
            metrics=Path(app["metrics_dir"]),  # type: ignore[index]
        )

    def markers_path(self, run_id: str) -> Path:
        return self.maps / f"markers-{run_id}.geojson"

    def latest_markers_path(self) -> Path:
        return self.maps / "markers-latest.geojson"

    def manifest_path(self, run_id: str) -> Path:
        return self.manifests / f"run-{run_id}.json"
