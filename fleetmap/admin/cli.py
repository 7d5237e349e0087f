"""Administrative CLI utilities for the resolution cache and run history."""
from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import List, Optional

from fleetmap.admin.status import summarise_cache, summarise_runs
from fleetmap.fetch.geocoder import RateLimitedGeocodeClient
from fleetmap.fetch.session import HttpSession
from fleetmap.geo.cache import JsonFileCacheStore, ResolutionCache
from fleetmap.geo.resolver import AddressResolver
from fleetmap.geo.static_table import StaticLookupTable
from fleetmap.main import DEFAULT_LOGGING, DEFAULT_SETTINGS, load_settings
from fleetmap.observability.log import configure_logging
from fleetmap.storage.layout import DataLayout


def _load_cache(layout: DataLayout) -> ResolutionCache:
    cache = ResolutionCache(JsonFileCacheStore.in_directory(layout.cache))
    cache.load()
    return cache


def _offline_resolver(args: argparse.Namespace) -> AddressResolver:
    settings = load_settings(Path(args.settings))
    layout = DataLayout.from_settings(settings)
    # tier_for() never touches the network, so the geocoder gets no client.
    return AddressResolver(
        static_table=StaticLookupTable.from_settings(settings),
        cache=_load_cache(layout),
        geocoder=RateLimitedGeocodeClient(HttpSession(None)),
    )


def cmd_status(args: argparse.Namespace) -> None:
    settings = load_settings(Path(args.settings))
    layout = DataLayout.from_settings(settings)
    payload = {
        "cache": summarise_cache(_load_cache(layout)),
        "runs": summarise_runs(layout.manifests, limit=args.last),
    }
    print(json.dumps(payload, indent=2))


def cmd_explain(args: argparse.Namespace) -> None:
    resolver = _offline_resolver(args)
    print(json.dumps({"address": args.address, "tier": resolver.tier_for(args.address)}, indent=2))


def cmd_lookup(args: argparse.Namespace) -> None:
    resolver = _offline_resolver(args)
    tier = resolver.tier_for(args.address)
    found = None
    if tier in ("static", "cache"):
        found = resolver.lookup_local(args.address)
    payload = {"address": args.address, "tier": tier, "coordinates": found.as_dict() if found else None}
    print(json.dumps(payload, indent=2))
    if found is None:
        raise SystemExit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fleetmap-admin", description="Administration commands")
    parser.add_argument("--settings", default=str(DEFAULT_SETTINGS))
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Show cache size and recent runs")
    status.add_argument("--last", type=int, default=10, help="Number of manifests to list")

    explain = sub.add_parser("explain", help="Show which tier would resolve an address")
    explain.add_argument("--address", required=True)

    lookup = sub.add_parser("lookup", help="Print locally known coordinates for an address")
    lookup.add_argument("--address", required=True)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    configure_logging(DEFAULT_LOGGING)
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "status":
        cmd_status(args)
        return
    if args.command == "explain":
        cmd_explain(args)
        return
    if args.command == "lookup":
        cmd_lookup(args)
        return


if __name__ == "__main__":
    main()
