"""Tests for the SQLAlchemy repository against in-memory SQLite."""
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from uptimeguard.database import Base
from uptimeguard.errors import RepositoryUnavailable
from uptimeguard.schemas import (
    AdvancedSettings,
    Heartbeat,
    HeartbeatStatus,
    Incident,
    Monitor,
    MonitorType,
    NotificationChannel,
    NotificationType,
    SslInfo,
    StatsPeriod,
    UptimeStats,
)
from uptimeguard.storage import SqlRepository

from conftest import START

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def sql_repository(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return SqlRepository(session_factory, poll_interval=0.01)


def make_monitor(**kwargs) -> Monitor:
    data = {
        "name": "Shop",
        "url": "https://shop.example.com",
        "tags": ["prod"],
        "notifications": [
            NotificationChannel(type=NotificationType.WEBHOOK, name="ops", config={"url": "x"})
        ],
        "advanced_settings": AdvancedSettings(headers={"X-Check": "1"}),
        "created_at": START,
        "updated_at": START,
    }
    data.update(kwargs)
    return Monitor(**data)


@pytest.mark.asyncio
async def test_monitor_round_trip(sql_repository):
    monitor = make_monitor()
    await sql_repository.add_monitor(monitor)

    loaded = await sql_repository.get_monitor(monitor.id)
    assert loaded == monitor
    assert loaded.created_at.tzinfo is not None
    assert loaded.notifications[0].config == {"url": "x"}


@pytest.mark.asyncio
async def test_update_and_toggle_monitor(sql_repository):
    monitor = make_monitor()
    await sql_repository.add_monitor(monitor)

    await sql_repository.update_monitor(monitor.model_copy(update={"interval": 15}))
    assert (await sql_repository.get_monitor(monitor.id)).interval == 15

    paused = await sql_repository.set_monitor_active(monitor.id, False)
    assert paused.is_active is False
    assert await sql_repository.list_active_monitors() == []
    assert len(await sql_repository.list_monitors()) == 1


@pytest.mark.asyncio
async def test_update_unknown_monitor(sql_repository):
    with pytest.raises(KeyError):
        await sql_repository.update_monitor(make_monitor())


@pytest.mark.asyncio
async def test_delete_monitor_removes_children(sql_repository):
    monitor = make_monitor()
    await sql_repository.add_monitor(monitor)
    await sql_repository.add_heartbeat(
        Heartbeat(monitor_id=monitor.id, status=HeartbeatStatus.UP, created_at=START)
    )
    await sql_repository.add_incident(Incident(monitor_id=monitor.id, start_time=START))

    assert await sql_repository.delete_monitor(monitor.id) is True
    assert await sql_repository.get_monitor(monitor.id) is None
    assert await sql_repository.list_heartbeats(monitor.id) == []
    assert await sql_repository.list_incidents(monitor.id) == []
    assert await sql_repository.delete_monitor(monitor.id) is False


@pytest.mark.asyncio
async def test_heartbeat_window_and_limit(sql_repository):
    monitor = make_monitor()
    await sql_repository.add_monitor(monitor)
    for minutes in range(5):
        await sql_repository.add_heartbeat(
            Heartbeat(
                monitor_id=monitor.id,
                status=HeartbeatStatus.UP,
                response_time=minutes,
                created_at=START + timedelta(minutes=minutes),
            )
        )

    window = await sql_repository.list_heartbeats(
        monitor.id, since=START, until=START + timedelta(minutes=3)
    )
    assert [h.response_time for h in window] == [1, 2, 3]

    latest = await sql_repository.list_heartbeats(monitor.id, limit=2)
    assert [h.response_time for h in latest] == [3, 4]
    assert latest[0].created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_heartbeat_ssl_info_round_trip(sql_repository):
    monitor = make_monitor()
    await sql_repository.add_monitor(monitor)
    ssl_info = SslInfo(
        valid_from=START - timedelta(days=30),
        valid_to=START + timedelta(days=60),
        issuer="Test CA",
        days_remaining=60,
    )
    await sql_repository.add_heartbeat(
        Heartbeat(monitor_id=monitor.id, status=HeartbeatStatus.UP, ssl_info=ssl_info, created_at=START)
    )
    [loaded] = await sql_repository.list_heartbeats(monitor.id)
    assert loaded.ssl_info.issuer == "Test CA"
    assert loaded.ssl_info.days_remaining == 60


@pytest.mark.asyncio
async def test_prune_heartbeats(sql_repository):
    monitor = make_monitor()
    await sql_repository.add_monitor(monitor)
    for days in (400, 10):
        await sql_repository.add_heartbeat(
            Heartbeat(
                monitor_id=monitor.id,
                status=HeartbeatStatus.UP,
                created_at=START - timedelta(days=days),
            )
        )

    assert await sql_repository.prune_heartbeats(START - timedelta(days=365)) == 1
    assert len(await sql_repository.list_heartbeats(monitor.id)) == 1


@pytest.mark.asyncio
async def test_incident_lifecycle(sql_repository):
    monitor = make_monitor()
    await sql_repository.add_monitor(monitor)
    incident = Incident(monitor_id=monitor.id, start_time=START, notifications_sent=[START])
    await sql_repository.add_incident(incident)

    open_incident = await sql_repository.get_open_incident(monitor.id)
    assert open_incident == incident

    closed = incident.model_copy(
        update={
            "end_time": START + timedelta(minutes=5),
            "resolved": True,
            "notifications_sent": [START, START + timedelta(minutes=5)],
        }
    )
    await sql_repository.update_incident(closed)

    assert await sql_repository.get_open_incident(monitor.id) is None
    assert await sql_repository.get_incident(incident.id) == closed
    assert await sql_repository.list_incidents(monitor.id, since=START + timedelta(hours=1)) == []


@pytest.mark.asyncio
async def test_push_timestamps(sql_repository):
    monitor = make_monitor(type=MonitorType.HEARTBEAT)
    await sql_repository.add_monitor(monitor)
    assert await sql_repository.get_last_push(monitor.id) is None

    await sql_repository.record_push(monitor.id, START)
    assert await sql_repository.get_last_push(monitor.id) == START


@pytest.mark.asyncio
async def test_stats_upsert(sql_repository):
    monitor = make_monitor()
    await sql_repository.add_monitor(monitor)
    stats = UptimeStats(
        monitor_id=monitor.id,
        period=StatsPeriod.DAY,
        uptime_percentage=99.5,
        total_checks=200,
        successful_checks=199,
        failed_checks=1,
        avg_response_time=120.0,
        incidents=[Incident(monitor_id=monitor.id, start_time=START)],
        created_at=START,
    )
    await sql_repository.save_stats(stats)
    await sql_repository.save_stats(stats.model_copy(update={"uptime_percentage": 100.0}))

    loaded = await sql_repository.get_stats(monitor.id, StatsPeriod.DAY)
    assert loaded.uptime_percentage == 100.0
    assert loaded.incidents[0].monitor_id == monitor.id
    assert await sql_repository.get_stats(monitor.id, StatsPeriod.WEEK) is None


@pytest.mark.asyncio
async def test_watch_yields_on_change(sql_repository):
    stream = sql_repository.watch_active_monitors()
    assert await stream.__anext__() == []

    monitor = make_monitor()
    await sql_repository.add_monitor(monitor)
    assert [m.id for m in await stream.__anext__()] == [monitor.id]
    await stream.aclose()


@pytest.mark.asyncio
async def test_database_errors_become_repository_unavailable(engine, sql_repository):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    with pytest.raises(RepositoryUnavailable):
        await sql_repository.list_monitors()
