"""Time source used for request spacing."""
from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def monotonic(self) -> float:
        """Seconds from an arbitrary fixed origin."""

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for the given number of seconds."""


class SystemClock:
    """Wall-clock implementation backed by `time.monotonic` and `asyncio.sleep`."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
