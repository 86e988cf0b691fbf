"""
SQLAlchemy-backed Repository.
"""
import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from uptimeguard.errors import RepositoryUnavailable
from uptimeguard.models import HeartbeatRecord, IncidentRecord, MonitorRecord, UptimeStatsRecord
from uptimeguard.repository import Repository
from uptimeguard.schemas import Heartbeat, Incident, Monitor, StatsPeriod, UptimeStats, as_utc

logger = logging.getLogger("uptimeguard.storage")


def _monitor_values(monitor: Monitor) -> dict:
    data = monitor.model_dump(exclude={"advanced_settings", "notifications", "type", "method"})
    data["type"] = monitor.type.value
    data["method"] = monitor.method.value
    data["advanced_settings"] = monitor.advanced_settings.model_dump(mode="json")
    data["notifications"] = [c.model_dump(mode="json") for c in monitor.notifications]
    return data


def _heartbeat_values(heartbeat: Heartbeat) -> dict:
    data = heartbeat.model_dump(exclude={"ssl_info", "status"})
    data["status"] = heartbeat.status.value
    data["ssl_info"] = heartbeat.ssl_info.model_dump(mode="json") if heartbeat.ssl_info else None
    return data


def _incident_values(incident: Incident) -> dict:
    data = incident.model_dump(exclude={"notifications_sent"})
    data["notifications_sent"] = [t.isoformat() for t in incident.notifications_sent]
    return data


class SqlRepository(Repository):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        poll_interval: float = 5.0,
    ) -> None:
        self._session_factory = session_factory
        self._poll_interval = poll_interval

    @asynccontextmanager
    async def _session(self):
        try:
            async with self._session_factory() as db:
                yield db
        except SQLAlchemyError as e:
            raise RepositoryUnavailable(f"Database error: {str(e)[:200]}") from e

    # Monitors

    async def add_monitor(self, monitor: Monitor) -> Monitor:
        async with self._session() as db:
            db.add(MonitorRecord(**_monitor_values(monitor)))
            await db.commit()
        return monitor

    async def update_monitor(self, monitor: Monitor) -> Monitor:
        async with self._session() as db:
            record = await db.get(MonitorRecord, monitor.id)
            if record is None:
                raise KeyError(monitor.id)
            for key, value in _monitor_values(monitor).items():
                setattr(record, key, value)
            await db.commit()
        return monitor

    async def get_monitor(self, monitor_id: str) -> Optional[Monitor]:
        async with self._session() as db:
            record = await db.get(MonitorRecord, monitor_id)
            return Monitor.model_validate(record) if record else None

    async def delete_monitor(self, monitor_id: str) -> bool:
        async with self._session() as db:
            record = await db.get(MonitorRecord, monitor_id)
            if record is None:
                return False
            await db.execute(delete(HeartbeatRecord).where(HeartbeatRecord.monitor_id == monitor_id))
            await db.execute(delete(IncidentRecord).where(IncidentRecord.monitor_id == monitor_id))
            await db.execute(
                delete(UptimeStatsRecord).where(UptimeStatsRecord.monitor_id == monitor_id)
            )
            await db.delete(record)
            await db.commit()
        return True

    async def list_monitors(self) -> list[Monitor]:
        async with self._session() as db:
            result = await db.execute(select(MonitorRecord).order_by(MonitorRecord.created_at))
            return [Monitor.model_validate(r) for r in result.scalars().all()]

    async def list_active_monitors(self) -> list[Monitor]:
        async with self._session() as db:
            result = await db.execute(
                select(MonitorRecord)
                .where(MonitorRecord.is_active == True)  # noqa: E712
                .order_by(MonitorRecord.created_at)
            )
            return [Monitor.model_validate(r) for r in result.scalars().all()]

    async def watch_active_monitors(self) -> AsyncIterator[list[Monitor]]:
        previous: Optional[list[Monitor]] = None
        while True:
            try:
                snapshot = await self.list_active_monitors()
            except RepositoryUnavailable as e:
                logger.warning(f"Active monitor poll failed: {e}")
            else:
                if snapshot != previous:
                    previous = snapshot
                    yield snapshot
            await asyncio.sleep(self._poll_interval)

    # Heartbeats

    async def add_heartbeat(self, heartbeat: Heartbeat) -> Heartbeat:
        async with self._session() as db:
            db.add(HeartbeatRecord(**_heartbeat_values(heartbeat)))
            await db.commit()
        return heartbeat

    async def list_heartbeats(
        self,
        monitor_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[Heartbeat]:
        query = select(HeartbeatRecord).where(HeartbeatRecord.monitor_id == monitor_id)
        if since is not None:
            query = query.where(HeartbeatRecord.created_at > since)
        if until is not None:
            query = query.where(HeartbeatRecord.created_at <= until)
        query = query.order_by(HeartbeatRecord.created_at.desc())
        if limit is not None:
            query = query.limit(limit)
        async with self._session() as db:
            result = await db.execute(query)
            records = result.scalars().all()
        return [Heartbeat.model_validate(r) for r in reversed(records)]

    async def prune_heartbeats(self, before: datetime) -> int:
        async with self._session() as db:
            result = await db.execute(
                delete(HeartbeatRecord).where(HeartbeatRecord.created_at < before)
            )
            await db.commit()
            return result.rowcount or 0

    async def record_push(self, monitor_id: str, at: datetime) -> None:
        async with self._session() as db:
            record = await db.get(MonitorRecord, monitor_id)
            if record is None:
                raise KeyError(monitor_id)
            record.last_push_at = at
            await db.commit()

    async def get_last_push(self, monitor_id: str) -> Optional[datetime]:
        async with self._session() as db:
            result = await db.execute(
                select(MonitorRecord.last_push_at).where(MonitorRecord.id == monitor_id)
            )
            last_push = result.scalar_one_or_none()
            return as_utc(last_push) if last_push else None

    # Incidents

    async def add_incident(self, incident: Incident) -> Incident:
        async with self._session() as db:
            db.add(IncidentRecord(**_incident_values(incident)))
            await db.commit()
        return incident

    async def update_incident(self, incident: Incident) -> Incident:
        async with self._session() as db:
            record = await db.get(IncidentRecord, incident.id)
            if record is None:
                raise KeyError(incident.id)
            for key, value in _incident_values(incident).items():
                setattr(record, key, value)
            await db.commit()
        return incident

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        async with self._session() as db:
            record = await db.get(IncidentRecord, incident_id)
            return Incident.model_validate(record) if record else None

    async def get_open_incident(self, monitor_id: str) -> Optional[Incident]:
        async with self._session() as db:
            result = await db.execute(
                select(IncidentRecord)
                .where(
                    IncidentRecord.monitor_id == monitor_id,
                    IncidentRecord.end_time.is_(None),
                )
                .order_by(IncidentRecord.start_time)
                .limit(1)
            )
            record = result.scalars().first()
            return Incident.model_validate(record) if record else None

    async def list_incidents(
        self, monitor_id: str, since: Optional[datetime] = None
    ) -> list[Incident]:
        query = select(IncidentRecord).where(IncidentRecord.monitor_id == monitor_id)
        if since is not None:
            query = query.where(
                or_(IncidentRecord.end_time.is_(None), IncidentRecord.end_time >= since)
            )
        async with self._session() as db:
            result = await db.execute(query.order_by(IncidentRecord.start_time))
            return [Incident.model_validate(r) for r in result.scalars().all()]

    # Stats

    async def save_stats(self, stats: UptimeStats) -> None:
        values = stats.model_dump(exclude={"incidents", "period"})
        values["period"] = stats.period.value
        values["incidents"] = [i.model_dump(mode="json") for i in stats.incidents]
        async with self._session() as db:
            record = await db.get(UptimeStatsRecord, (stats.monitor_id, stats.period.value))
            if record is None:
                db.add(UptimeStatsRecord(**values))
            else:
                for key, value in values.items():
                    setattr(record, key, value)
            await db.commit()

    async def get_stats(self, monitor_id: str, period: StatsPeriod) -> Optional[UptimeStats]:
        async with self._session() as db:
            record = await db.get(UptimeStatsRecord, (monitor_id, period.value))
            return UptimeStats.model_validate(record) if record else None
