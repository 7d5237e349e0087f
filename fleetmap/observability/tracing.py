"""Tracing helpers for resolution runs and geocode dispatches."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars


def _logger() -> structlog.typing.FilteringBoundLogger:
    return structlog.get_logger("fleetmap.trace")


def set_context(*, run_id: str) -> None:
    bind_contextvars(run_id=run_id)
    _logger().debug("trace_context", run_id=run_id)


def clear_context() -> None:
    clear_contextvars()


@contextlib.contextmanager
def span(*, name: str, address: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _logger().info("trace_span", span=name, address=address, elapsed_ms=elapsed_ms)


def log_geocode_result(*, address: str, status: int, candidates: int, elapsed_ms: int) -> None:
    _logger().info(
        "geocode_result",
        address=address,
        status=status,
        candidates=candidates,
        elapsed_ms=elapsed_ms,
    )
