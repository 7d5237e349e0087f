import asyncio

import httpx
import pytest
from structlog.testing import capture_logs

from conftest import FakeClock, GeocodeService
from fleetmap.errors import ResolutionFailure
from fleetmap.fetch.geocoder import RateLimitedGeocodeClient
from fleetmap.fetch.session import create_http_session
from fleetmap.observability.metrics import MetricsRegistry
from fleetmap.storage.models import Coordinates, Unresolved

SEARCH_URL = "https://geocode.test/search"


def _geocode_all(service, addresses, *, clock, min_interval=0.8, metrics=None):
    async def _run():
        async with create_http_session(user_agent="test", timeout=5, transport=service.transport()) as session:
            client = RateLimitedGeocodeClient(
                session,
                search_url=SEARCH_URL,
                min_interval=min_interval,
                clock=clock,
                metrics=metrics,
            )
            return [await client.geocode(address) for address in addresses]

    return asyncio.run(_run())


def test_first_candidate_with_string_fields_is_used(clock):
    service = GeocodeService(
        {"42 Unknown Rd": [{"lat": "10", "lon": "20"}, {"lat": "-1", "lon": "-1"}]}
    )
    results = _geocode_all(service, ["42 Unknown Rd"], clock=clock)
    assert results == [Coordinates(lat=10.0, lng=20.0)]
    request = service.requests[0]
    assert request.url.params["format"] == "json"
    assert request.url.params["q"] == "42 Unknown Rd"
    assert request.headers["User-Agent"] == "test"


def test_zero_candidates_is_no_match_and_logged(clock):
    service = GeocodeService({"Nowhere": []})
    metrics = MetricsRegistry()
    with capture_logs() as logs:
        results = _geocode_all(service, ["Nowhere"], clock=clock, metrics=metrics)
    assert results == [Unresolved(ResolutionFailure.NO_MATCH, "no candidates")]
    assert metrics.get("geocode_no_match") == 1
    assert any(entry["event"] == "geocode_no_match" and entry["address"] == "Nowhere" for entry in logs)


@pytest.mark.parametrize(
    "response",
    [
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("timed out"),
        503,
    ],
)
def test_transport_failures_are_network_errors(clock, response):
    service = GeocodeService({"1 Flaky Way": response})
    metrics = MetricsRegistry()
    with capture_logs() as logs:
        results = _geocode_all(service, ["1 Flaky Way"], clock=clock, metrics=metrics)
    assert isinstance(results[0], Unresolved)
    assert results[0].reason is ResolutionFailure.NETWORK_ERROR
    assert metrics.get("geocode_network_errors") == 1
    assert any(entry["event"] == "geocode_network_error" for entry in logs)


def test_unusable_candidate_is_no_match(clock):
    service = GeocodeService({"Odd Pl": [{"display_name": "Odd Pl"}], "Odder Pl": [{"lat": "x", "lon": "1"}]})
    results = _geocode_all(service, ["Odd Pl", "Odder Pl"], clock=clock)
    assert [result.reason for result in results] == [ResolutionFailure.NO_MATCH, ResolutionFailure.NO_MATCH]


def test_dispatches_are_spaced_by_min_interval(clock):
    service = GeocodeService({"A": [{"lat": 1, "lon": 1}], "B": [{"lat": 2, "lon": 2}], "C": []}, clock=clock)
    _geocode_all(service, ["A", "B", "C"], clock=clock)
    assert service.queries == ["A", "B", "C"]
    times = service.request_times
    assert len(times) == 3
    gaps = [later - earlier for earlier, later in zip(times, times[1:])]
    assert all(gap >= 0.8 - 1e-9 for gap in gaps)
    # The first request is not delayed.
    assert times[0] == 100.0


def test_response_latency_counts_toward_spacing():
    clock = FakeClock()
    service = GeocodeService({"A": [], "B": []}, clock=clock, latency=0.3)
    _geocode_all(service, ["A", "B"], clock=clock)
    assert clock.sleeps == [pytest.approx(0.5)]
    # A is sent at 100.0 and B at 100.8: 0.3 s of latency plus a 0.5 s wait.
    assert service.request_times == [100.0, pytest.approx(100.3 + 0.5)]


def test_slow_responses_need_no_extra_wait():
    clock = FakeClock()
    service = GeocodeService({"A": [], "B": []}, clock=clock, latency=2.0)
    _geocode_all(service, ["A", "B"], clock=clock)
    assert clock.sleeps == []


def test_concurrent_callers_are_serialised(clock):
    service = GeocodeService({"A": [{"lat": 1, "lon": 1}], "B": [{"lat": 2, "lon": 2}]}, clock=clock)

    async def _run():
        async with create_http_session(user_agent="test", timeout=5, transport=service.transport()) as session:
            client = RateLimitedGeocodeClient(session, search_url=SEARCH_URL, min_interval=0.8, clock=clock)
            return await asyncio.gather(client.geocode("A"), client.geocode("B"))

    results = asyncio.run(_run())
    assert results == [Coordinates(lat=1.0, lng=1.0), Coordinates(lat=2.0, lng=2.0)]
    assert service.request_times[1] - service.request_times[0] >= 0.8 - 1e-9


def test_negative_interval_rejected():
    with pytest.raises(ValueError):
        RateLimitedGeocodeClient(session=None, min_interval=-1)  # type: ignore[arg-type]
