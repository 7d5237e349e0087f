import asyncio
import json

from conftest import GeocodeService
from fleetmap.orchestrator.refresh_loop import run_refresh_loop

FLEET = [
    {"machine_id": "NB-7", "status": "healthy", "locations": [{"customer_name": "Dee", "address": "5 Loop Ln"}]},
]


def test_refresh_loop_reuses_cache_between_ticks(tmp_path, settings, clock):
    fleet = tmp_path / "fleet.json"
    fleet.write_text(json.dumps(FLEET), encoding="utf-8")
    service = GeocodeService({"5 Loop Ln": [{"lat": 1, "lon": 2}]})
    snapshots = []

    completed = asyncio.run(
        run_refresh_loop(
            settings,
            source=f"file://{fleet}",
            interval_seconds=30,
            ticks=3,
            sink=snapshots.append,
            transport=service.transport(),
            clock=clock,
        )
    )

    assert len(completed) == 3
    assert service.queries == ["5 Loop Ln"]
    assert [s.progress.current for s in snapshots] == [1, 1, 1]
    assert all(len(s.markers) == 1 for s in snapshots)
    assert clock.sleeps == [30, 30]
    manifests = sorted((tmp_path / "data" / "manifests").glob("run-*.json"))
    assert len(manifests) == 3


def test_refresh_loop_survives_fleet_failures(tmp_path, settings, clock):
    completed = asyncio.run(
        run_refresh_loop(
            settings,
            source=f"file://{tmp_path / 'absent.json'}",
            interval_seconds=5,
            ticks=2,
            transport=GeocodeService().transport(),
            clock=clock,
        )
    )
    assert completed == []
    assert clock.sleeps == [5]


def test_each_tick_exports_its_own_counters(tmp_path, settings, clock):
    fleet = tmp_path / "fleet.json"
    fleet.write_text(json.dumps(FLEET), encoding="utf-8")
    service = GeocodeService({"5 Loop Ln": [{"lat": 1, "lon": 2}]})

    completed = asyncio.run(
        run_refresh_loop(
            settings,
            source=f"file://{fleet}",
            interval_seconds=30,
            ticks=2,
            transport=service.transport(),
            clock=clock,
        )
    )

    metrics_dir = tmp_path / "data" / "metrics"
    first, second = (json.loads((metrics_dir / f"run_{run_id}.json").read_text(encoding="utf-8")) for run_id in completed)
    assert first["counters"]["geocode_requests"] == 1
    assert first["counters"]["cache_hits"] == 0
    assert second["counters"]["geocode_requests"] == 0
    assert second["counters"]["cache_hits"] == 1
    assert second["totals"]["geocode_requests"] == 1
    assert second["totals"]["pairs_processed"] == 2

    manifest = json.loads((tmp_path / "data" / "manifests" / f"run-{completed[1]}.json").read_text(encoding="utf-8"))
    assert manifest["metrics"]["pairs_processed"] == 1
