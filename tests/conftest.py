from typing import Dict, List

import httpx
import pytest
import structlog

# Keep library log lines off stdout so CLI tests can parse what commands print.
structlog.configure(
    processors=[structlog.processors.KeyValueRenderer()],
    logger_factory=structlog.ReturnLoggerFactory(),
)


class FakeClock:
    """Deterministic clock: sleeping advances time instantly."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class GeocodeService:
    """httpx handler standing in for a Nominatim-style search endpoint.

    `responses` maps a query to a candidate list, an HTTP status code, or an
    exception to raise. Unknown queries return no candidates.
    """

    def __init__(self, responses: Dict[str, object] | None = None, *, clock: FakeClock | None = None, latency: float = 0.0) -> None:
        self.responses = dict(responses or {})
        self.queries: List[str] = []
        self.requests: List[httpx.Request] = []
        self.request_times: List[float] = []
        self._clock = clock
        self._latency = latency

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        query = request.url.params.get("q", "")
        self.queries.append(query)
        if self._clock is not None:
            self.request_times.append(self._clock.now)
            self._clock.now += self._latency
        result = self.responses.get(query, [])
        if isinstance(result, Exception):
            raise result
        if isinstance(result, int):
            return httpx.Response(result, request=request)
        return httpx.Response(200, json=result, request=request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class FailingStore:
    """Cache store whose writes raise until `broken` is cleared."""

    def __init__(self) -> None:
        self.broken = True
        self.written: Dict[str, object] | None = None

    def read(self) -> Dict[str, object]:
        return {}

    def write(self, payload: Dict[str, object]) -> None:
        if self.broken:
            raise OSError("disk full")
        self.written = payload


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings(tmp_path) -> Dict[str, object]:
    data_root = tmp_path / "data"
    return {
        "app": {
            "cache_dir": str(data_root / "cache"),
            "maps_dir": str(data_root / "maps"),
            "manifest_dir": str(data_root / "manifests"),
            "metrics_dir": str(data_root / "metrics"),
        },
        "fleet": {"url": "http://fleet.test/management/machine-map", "timeout_seconds": 5},
        "geocode": {
            "url": "https://geocode.test/search",
            "user_agent": "fleetmap-tests",
            "min_interval_ms": 800,
            "timeout_seconds": 5,
        },
        "refresh": {"interval_seconds": 60},
    }
