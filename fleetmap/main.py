"""Command-line entrypoints for the fleet map location pipeline."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Coroutine, Dict, List, Optional, TypeVar

import httpx
import orjson
import structlog
import tomllib
from dotenv import load_dotenv

try:
    import uvloop
except ImportError:  # pragma: no cover - uvloop unavailable on Windows
    uvloop = None

from fleetmap.errors import FleetFetchError
from fleetmap.fetch.clock import Clock
from fleetmap.fetch.fleet import fetch_fleet
from fleetmap.fetch.geocoder import DEFAULT_SEARCH_URL, RateLimitedGeocodeClient
from fleetmap.fetch.session import HttpSession, create_http_session
from fleetmap.geo.cache import JsonFileCacheStore, ResolutionCache
from fleetmap.geo.resolver import AddressResolver
from fleetmap.geo.static_table import StaticLookupTable
from fleetmap.observability.log import configure_logging
from fleetmap.observability.metrics import MetricsRegistry
from fleetmap.observability.tracing import clear_context, set_context
from fleetmap.orchestrator.aggregator import BatchAggregator
from fleetmap.storage.layout import DataLayout
from fleetmap.storage.models import BatchSnapshot, summarise_units
from fleetmap.storage.writers import MapWriter

LOGGER = structlog.get_logger(__name__)

DEFAULT_SETTINGS = Path("config/settings.toml")
DEFAULT_LOGGING = Path("config/logging.yaml")

SnapshotSink = Callable[[BatchSnapshot], None]
T = TypeVar("T")


def load_settings(path: Path) -> Dict[str, object]:
    """Read the TOML configuration file."""
    with path.open("rb") as handle:
        return tomllib.load(handle)


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")


def fleet_source(settings: Dict[str, object], override: Optional[str] = None) -> str:
    """Resolve the fleet-status URL: CLI flag, then environment, then settings."""
    if override:
        return override
    return os.environ.get("FLEETMAP_FLEET_URL") or str(settings["fleet"]["url"])  # type: ignore[index]


def fleet_failure_message(exc: FleetFetchError) -> str:
    return f"Failed to fetch fleet data: {exc}. Retry with `fleetmap locate`."


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="fleetmap", description="Resolve fleet unit addresses for the map view")
    parser.add_argument("--settings", default=str(DEFAULT_SETTINGS), help="Path to settings.toml")
    sub = parser.add_subparsers(dest="command", required=True)

    locate = sub.add_parser("locate", help="Resolve one batch of fleet locations")
    locate.add_argument("--source", help="Fleet-status URL (http(s):// or file://)")
    locate.add_argument("--run-id", help="Identifier used for output file names")
    locate.add_argument("--min-interval-ms", type=int, help="Override the spacing between geocode requests")
    locate.add_argument("--emit-markers", action="store_true", help="Print full marker lists with each snapshot")

    watch = sub.add_parser("watch", help="Re-run the batch on an interval")
    watch.add_argument("--source", help="Fleet-status URL (http(s):// or file://)")
    watch.add_argument("--ticks", type=int, help="Number of iterations to execute")
    watch.add_argument("--interval", type=int, help="Seconds between ticks")

    return parser


@dataclass
class Pipeline:
    """Collaborators shared by every batch run within one process."""

    session: HttpSession
    resolver: AddressResolver
    aggregator: BatchAggregator
    layout: DataLayout
    writer: MapWriter
    metrics: MetricsRegistry


@contextlib.asynccontextmanager
async def open_pipeline(
    settings: Dict[str, object],
    *,
    metrics: Optional[MetricsRegistry] = None,
    min_interval_ms: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Optional[Clock] = None,
) -> AsyncIterator[Pipeline]:
    """Load the cache and open the HTTP session for the lifetime of the context."""
    metrics = metrics or MetricsRegistry()
    geocode_cfg: Dict[str, object] = settings.get("geocode", {})  # type: ignore[assignment]
    layout = DataLayout.from_settings(settings)
    cache = ResolutionCache(JsonFileCacheStore.in_directory(layout.cache))
    cache.load()
    interval_ms = min_interval_ms if min_interval_ms is not None else int(geocode_cfg.get("min_interval_ms", 800))
    async with create_http_session(
        user_agent=str(geocode_cfg.get("user_agent", "fleetmap")),
        timeout=float(geocode_cfg.get("timeout_seconds", 10)),
        transport=transport,
    ) as session:
        geocoder = RateLimitedGeocodeClient(
            session,
            search_url=str(geocode_cfg.get("url", DEFAULT_SEARCH_URL)),
            min_interval=interval_ms / 1000,
            clock=clock,
            metrics=metrics,
        )
        resolver = AddressResolver(
            static_table=StaticLookupTable.from_settings(settings),
            cache=cache,
            geocoder=geocoder,
            metrics=metrics,
        )
        yield Pipeline(
            session=session,
            resolver=resolver,
            aggregator=BatchAggregator(resolver, metrics=metrics),
            layout=layout,
            writer=MapWriter(layout),
            metrics=metrics,
        )
        await cache.flush()


def print_snapshot(snapshot: BatchSnapshot, *, with_markers: bool = False) -> None:
    if with_markers:
        payload: Dict[str, object] = snapshot.as_dict()
    else:
        payload = {
            "progress": {"current": snapshot.progress.current, "total": snapshot.progress.total},
            "percent": snapshot.progress.percent,
            "markers": len(snapshot.markers),
        }
    sys.stdout.write(orjson.dumps(payload).decode() + "\n")
    sys.stdout.flush()


async def locate_once(
    pipeline: Pipeline,
    settings: Dict[str, object],
    *,
    source: str,
    run_id: str,
    sink: Optional[SnapshotSink] = None,
) -> Path:
    """Fetch the fleet, resolve every location and write outputs. Returns the manifest path."""
    fleet_cfg: Dict[str, object] = settings.get("fleet", {})  # type: ignore[assignment]
    set_context(run_id=run_id)
    pipeline.metrics.begin_run(run_id)
    try:
        units = await fetch_fleet(
            pipeline.session,
            source,
            token=os.environ.get("FLEETMAP_API_TOKEN"),
            timeout=float(fleet_cfg.get("timeout_seconds", 15)),
        )
        stats = summarise_units(units)
        LOGGER.info("fleet_stats", healthy=stats.healthy, needs_repair=stats.needs_repair, total=stats.total)

        last: Optional[BatchSnapshot] = None
        with pipeline.metrics.timed_run():
            async for snapshot in pipeline.aggregator.run(units):
                last = snapshot
                if sink is not None:
                    sink(snapshot)

        markers_path = pipeline.writer.write_markers(last, run_id=run_id)
        manifest = pipeline.writer.write_manifest(
            run_id=run_id,
            snapshot=last,
            stats=stats,
            counters=pipeline.metrics.run_counters(),
            markers_path=markers_path,
        )
        pipeline.metrics.export(pipeline.layout.metrics)
        return manifest
    finally:
        clear_context()


async def run_locate(
    args: argparse.Namespace,
    settings: Dict[str, object],
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Optional[Clock] = None,
) -> Path:
    """Execute the locate command end-to-end."""
    source = fleet_source(settings, getattr(args, "source", None))
    run_id = getattr(args, "run_id", None) or new_run_id()
    with_markers = bool(getattr(args, "emit_markers", False))
    async with open_pipeline(
        settings,
        min_interval_ms=getattr(args, "min_interval_ms", None),
        transport=transport,
        clock=clock,
    ) as pipeline:
        return await locate_once(
            pipeline,
            settings,
            source=source,
            run_id=run_id,
            sink=lambda snapshot: print_snapshot(snapshot, with_markers=with_markers),
        )


def _run(coro: Coroutine[Any, Any, T]) -> T:
    if uvloop is not None:
        return uvloop.run(coro)
    return asyncio.run(coro)


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    settings = load_settings(Path(args.settings))
    configure_logging(DEFAULT_LOGGING)

    if args.command == "watch":
        from fleetmap.orchestrator.refresh_loop import run_refresh_loop

        refresh_cfg: Dict[str, object] = settings.get("refresh", {})  # type: ignore[assignment]
        interval = args.interval if args.interval is not None else int(refresh_cfg.get("interval_seconds", 300))
        _run(
            run_refresh_loop(
                settings,
                source=fleet_source(settings, args.source),
                interval_seconds=interval,
                ticks=args.ticks,
                sink=print_snapshot,
            )
        )
        return

    if args.command == "locate":
        try:
            manifest = _run(run_locate(args, settings))
        except FleetFetchError as exc:
            raise SystemExit(fleet_failure_message(exc))
        LOGGER.info("locate_complete", manifest=str(manifest))


if __name__ == "__main__":
    main()
