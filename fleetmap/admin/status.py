"""Administrative status helpers."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import orjson

from fleetmap.geo.cache import ResolutionCache


def summarise_runs(manifest_dir: Path, *, limit: int = 10) -> List[Dict[str, object]]:
    """Summarise the most recent run manifests, newest first."""
    results: List[Dict[str, object]] = []
    if not manifest_dir.exists():
        return results
    for path in sorted(manifest_dir.glob("run-*.json"), reverse=True)[:limit]:
        try:
            payload = orjson.loads(path.read_bytes())
        except orjson.JSONDecodeError:
            continue
        if not isinstance(payload, dict):
            continue
        results.append(
            {
                "run_id": payload.get("run_id"),
                "progress": payload.get("progress"),
                "complete": payload.get("complete"),
                "markers": payload.get("markers"),
                "path": str(path),
            }
        )
    return results


def summarise_cache(cache: ResolutionCache) -> Dict[str, object]:
    return {"entries": len(cache)}
