"""
Repository contract consumed by the monitoring core, plus an in-memory
implementation and the bounded write-retry helper.
"""
import abc
import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime
from typing import Optional, TypeVar

from uptimeguard.clock import Clock, SystemClock
from uptimeguard.errors import RepositoryUnavailable
from uptimeguard.schemas import Heartbeat, Incident, Monitor, StatsPeriod, UptimeStats

logger = logging.getLogger("uptimeguard.repository")

T = TypeVar("T")


class Repository(abc.ABC):
    """Single source of truth for monitors, heartbeats, incidents and stats.

    Each method is an individually atomic operation. Implementations raise
    RepositoryUnavailable for transient storage failures.
    """

    # Monitors

    @abc.abstractmethod
    async def add_monitor(self, monitor: Monitor) -> Monitor: ...

    @abc.abstractmethod
    async def update_monitor(self, monitor: Monitor) -> Monitor: ...

    @abc.abstractmethod
    async def get_monitor(self, monitor_id: str) -> Optional[Monitor]: ...

    @abc.abstractmethod
    async def delete_monitor(self, monitor_id: str) -> bool: ...

    @abc.abstractmethod
    async def list_monitors(self) -> list[Monitor]: ...

    @abc.abstractmethod
    async def list_active_monitors(self) -> list[Monitor]: ...

    @abc.abstractmethod
    def watch_active_monitors(self) -> AsyncIterator[list[Monitor]]:
        """Yield the current set of active monitors, then a fresh snapshot
        whenever it may have changed. Restartable: every call starts over
        with the current state."""

    async def set_monitor_active(self, monitor_id: str, active: bool) -> Optional[Monitor]:
        monitor = await self.get_monitor(monitor_id)
        if monitor is None:
            return None
        return await self.update_monitor(monitor.model_copy(update={"is_active": active}))

    # Heartbeats

    @abc.abstractmethod
    async def add_heartbeat(self, heartbeat: Heartbeat) -> Heartbeat: ...

    @abc.abstractmethod
    async def list_heartbeats(
        self,
        monitor_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[Heartbeat]:
        """Heartbeats with since < created_at <= until, oldest first.
        With `limit`, only the most recent `limit` of them."""

    @abc.abstractmethod
    async def prune_heartbeats(self, before: datetime) -> int: ...

    @abc.abstractmethod
    async def record_push(self, monitor_id: str, at: datetime) -> None: ...

    @abc.abstractmethod
    async def get_last_push(self, monitor_id: str) -> Optional[datetime]: ...

    # Incidents

    @abc.abstractmethod
    async def add_incident(self, incident: Incident) -> Incident: ...

    @abc.abstractmethod
    async def update_incident(self, incident: Incident) -> Incident: ...

    @abc.abstractmethod
    async def get_incident(self, incident_id: str) -> Optional[Incident]: ...

    @abc.abstractmethod
    async def get_open_incident(self, monitor_id: str) -> Optional[Incident]: ...

    @abc.abstractmethod
    async def list_incidents(
        self, monitor_id: str, since: Optional[datetime] = None
    ) -> list[Incident]:
        """Incidents still open or ending at/after `since`, by start time."""

    # Stats

    @abc.abstractmethod
    async def save_stats(self, stats: UptimeStats) -> None: ...

    @abc.abstractmethod
    async def get_stats(self, monitor_id: str, period: StatsPeriod) -> Optional[UptimeStats]: ...


class InMemoryRepository(Repository):
    """Process-local repository. Watchers are woken on every monitor write."""

    def __init__(self) -> None:
        self._monitors: dict[str, Monitor] = {}
        self._heartbeats: dict[str, list[Heartbeat]] = {}
        self._incidents: dict[str, Incident] = {}
        self._pushes: dict[str, datetime] = {}
        self._stats: dict[tuple[str, StatsPeriod], UptimeStats] = {}
        self._changed = asyncio.Event()

    def _notify_watchers(self) -> None:
        self._changed.set()
        self._changed = asyncio.Event()

    async def add_monitor(self, monitor: Monitor) -> Monitor:
        self._monitors[monitor.id] = monitor.model_copy(deep=True)
        self._notify_watchers()
        return monitor

    async def update_monitor(self, monitor: Monitor) -> Monitor:
        if monitor.id not in self._monitors:
            raise KeyError(monitor.id)
        self._monitors[monitor.id] = monitor.model_copy(deep=True)
        self._notify_watchers()
        return monitor

    async def get_monitor(self, monitor_id: str) -> Optional[Monitor]:
        monitor = self._monitors.get(monitor_id)
        return monitor.model_copy(deep=True) if monitor else None

    async def delete_monitor(self, monitor_id: str) -> bool:
        if self._monitors.pop(monitor_id, None) is None:
            return False
        self._heartbeats.pop(monitor_id, None)
        self._pushes.pop(monitor_id, None)
        self._incidents = {
            k: v for k, v in self._incidents.items() if v.monitor_id != monitor_id
        }
        self._stats = {k: v for k, v in self._stats.items() if k[0] != monitor_id}
        self._notify_watchers()
        return True

    async def list_monitors(self) -> list[Monitor]:
        monitors = sorted(self._monitors.values(), key=lambda m: m.created_at)
        return [m.model_copy(deep=True) for m in monitors]

    async def list_active_monitors(self) -> list[Monitor]:
        return [m for m in await self.list_monitors() if m.is_active]

    async def watch_active_monitors(self) -> AsyncIterator[list[Monitor]]:
        while True:
            changed = self._changed
            yield await self.list_active_monitors()
            await changed.wait()

    async def add_heartbeat(self, heartbeat: Heartbeat) -> Heartbeat:
        beats = self._heartbeats.setdefault(heartbeat.monitor_id, [])
        beats.append(heartbeat.model_copy(deep=True))
        beats.sort(key=lambda h: h.created_at)
        return heartbeat

    async def list_heartbeats(
        self,
        monitor_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[Heartbeat]:
        beats = [
            h
            for h in self._heartbeats.get(monitor_id, [])
            if (since is None or h.created_at > since)
            and (until is None or h.created_at <= until)
        ]
        if limit is not None:
            beats = beats[-limit:] if limit > 0 else []
        return [h.model_copy(deep=True) for h in beats]

    async def prune_heartbeats(self, before: datetime) -> int:
        removed = 0
        for monitor_id, beats in self._heartbeats.items():
            kept = [h for h in beats if h.created_at >= before]
            removed += len(beats) - len(kept)
            self._heartbeats[monitor_id] = kept
        return removed

    async def record_push(self, monitor_id: str, at: datetime) -> None:
        self._pushes[monitor_id] = at

    async def get_last_push(self, monitor_id: str) -> Optional[datetime]:
        return self._pushes.get(monitor_id)

    async def add_incident(self, incident: Incident) -> Incident:
        self._incidents[incident.id] = incident.model_copy(deep=True)
        return incident

    async def update_incident(self, incident: Incident) -> Incident:
        if incident.id not in self._incidents:
            raise KeyError(incident.id)
        self._incidents[incident.id] = incident.model_copy(deep=True)
        return incident

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        incident = self._incidents.get(incident_id)
        return incident.model_copy(deep=True) if incident else None

    async def get_open_incident(self, monitor_id: str) -> Optional[Incident]:
        for incident in self._incidents.values():
            if incident.monitor_id == monitor_id and incident.end_time is None:
                return incident.model_copy(deep=True)
        return None

    async def list_incidents(
        self, monitor_id: str, since: Optional[datetime] = None
    ) -> list[Incident]:
        incidents = [
            i
            for i in self._incidents.values()
            if i.monitor_id == monitor_id
            and (since is None or i.end_time is None or i.end_time >= since)
        ]
        incidents.sort(key=lambda i: i.start_time)
        return [i.model_copy(deep=True) for i in incidents]

    async def save_stats(self, stats: UptimeStats) -> None:
        self._stats[(stats.monitor_id, stats.period)] = stats.model_copy(deep=True)

    async def get_stats(self, monitor_id: str, period: StatsPeriod) -> Optional[UptimeStats]:
        stats = self._stats.get((monitor_id, period))
        return stats.model_copy(deep=True) if stats else None


async def retry_write(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    delay: float,
    clock: Optional[Clock] = None,
    description: str = "repository write",
) -> T:
    """Run a repository write, retrying RepositoryUnavailable up to `attempts` times."""
    clock = clock or SystemClock()
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except RepositoryUnavailable as e:
            if attempt == attempts:
                logger.error(f"{description} failed after {attempts} attempt(s): {e}")
                raise
            logger.warning(
                f"{description} failed (attempt {attempt}/{attempts}): {e}; "
                f"retrying in {delay}s"
            )
            await clock.sleep(delay)
    raise AssertionError("unreachable")
