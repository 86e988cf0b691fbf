import sys
import os

# Ensure src directory is in Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from uptimeguard.config import Settings
from uptimeguard.dependencies import build_components, get_components
from uptimeguard.main import app
from uptimeguard.repository import InMemoryRepository


START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manual clock: `sleep` advances time instantly."""

    def __init__(self, start: datetime = START):
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.advance(seconds)
        await asyncio.sleep(0)


async def settle(iterations: int = 20) -> None:
    """Let pending tasks on the loop run."""
    for _ in range(iterations):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        max_concurrent_checks=10,
        check_on_start=False,
        notification_reminder_interval=3600,
        repository_write_attempts=3,
        repository_retry_delay=0,
        drain_timeout=5,
    )


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest_asyncio.fixture
async def components(repository, settings, clock):
    return build_components(repository, settings, clock)


@pytest_asyncio.fixture
async def client(components):
    app.dependency_overrides[get_components] = lambda: components
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
