"""
Time source used by the monitoring core.

Everything that reads the current time or waits goes through a Clock so
tests can substitute a manual one.
"""
import asyncio
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall-clock time in UTC and real asyncio sleeps."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
