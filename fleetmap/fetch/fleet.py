"""Client for the fleet-status endpoint that lists units and their addresses."""
from __future__ import annotations

from typing import Dict, List, Optional

import httpx
import orjson
import structlog
from pydantic import TypeAdapter, ValidationError

from fleetmap.errors import FleetFetchError
from fleetmap.fetch.session import HttpSession
from fleetmap.storage.models import Unit

LOGGER = structlog.get_logger(__name__)

_UNITS = TypeAdapter(List[Unit])


def parse_fleet_payload(payload: object) -> List[Unit]:
    """Validate a fleet-status body, accepting the `{ok, data}` envelope or a bare list."""
    if isinstance(payload, dict):
        if payload.get("ok") is False:
            raise FleetFetchError("fleet endpoint reported failure", details={"payload": payload})
        if "data" not in payload:
            raise FleetFetchError("fleet response has no data field")
        payload = payload["data"]
    try:
        return _UNITS.validate_python(payload)
    except ValidationError as exc:
        raise FleetFetchError(
            "fleet response failed validation",
            details={"errors": exc.errors(include_url=False)},
        ) from exc


async def fetch_fleet(
    session: HttpSession,
    url: str,
    *,
    token: Optional[str] = None,
    timeout: Optional[float] = None,
) -> List[Unit]:
    """Fetch the ordered unit list; any failure raises `FleetFetchError`."""
    headers: Dict[str, str] = {}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    try:
        response = await session.get(url, headers=headers, timeout=timeout)
        response.raise_for_status()
        payload = orjson.loads(response.content)
    except httpx.HTTPStatusError as exc:
        LOGGER.error("fleet_fetch_failed", url=url, status=exc.response.status_code)
        raise FleetFetchError(
            f"fleet endpoint returned HTTP {exc.response.status_code}",
            details={"url": url, "status": exc.response.status_code},
        ) from exc
    except httpx.HTTPError as exc:
        LOGGER.error("fleet_fetch_failed", url=url, reason=str(exc))
        raise FleetFetchError(f"fleet endpoint unreachable: {exc}", details={"url": url}) from exc
    except orjson.JSONDecodeError as exc:
        LOGGER.error("fleet_fetch_failed", url=url, reason="invalid json")
        raise FleetFetchError("fleet response is not valid JSON", details={"url": url}) from exc

    units = parse_fleet_payload(payload)
    LOGGER.info("fleet_fetched", url=url, units=len(units), locations=sum(len(u.locations) for u in units))
    return units
