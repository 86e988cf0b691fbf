"""
Incident tracking: per-monitor UP/DOWN/MAINTENANCE state machine that opens
and closes incidents from the heartbeat stream and emits lifecycle events.
"""
import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional, Protocol

from uptimeguard.clock import Clock, SystemClock
from uptimeguard.config import Settings, get_settings
from uptimeguard.notifications.channels import format_duration
from uptimeguard.repository import Repository, retry_write
from uptimeguard.schemas import (
    Heartbeat,
    HeartbeatStatus,
    Incident,
    IncidentEvent,
    Monitor,
    MonitorState,
)

logger = logging.getLogger("uptimeguard.incidents")


class Notifier(Protocol):
    def dispatch(self, monitor: Monitor, incident: Incident, event: IncidentEvent) -> None:
        ...


class IncidentTracker:
    """Applies heartbeats to per-monitor state.

    Calls for the same monitor are serialized by a per-monitor lock, and the
    open incident is always re-read from the repository inside it, so at most
    one incident per monitor is ever open.
    """

    def __init__(
        self,
        repository: Repository,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self._repository = repository
        self._notifier = notifier
        self._clock = clock or SystemClock()
        self._reminder_interval = timedelta(seconds=settings.notification_reminder_interval)
        self._write_attempts = settings.repository_write_attempts
        self._retry_delay = settings.repository_retry_delay
        self._states: dict[str, MonitorState] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def state_of(self, monitor_id: str) -> Optional[MonitorState]:
        return self._states.get(monitor_id)

    async def observe(self, monitor: Monitor, heartbeat: Heartbeat) -> Optional[Incident]:
        """Apply one completed heartbeat. Returns the incident it touched, if any."""
        async with self._locks[monitor.id]:
            await self._load_state(monitor)
            if heartbeat.status == HeartbeatStatus.DOWN:
                return await self._on_failure(monitor, heartbeat)
            if heartbeat.status == HeartbeatStatus.UP:
                return await self._on_success(monitor, heartbeat)
            return None

    async def enter_maintenance(self, monitor_id: str) -> None:
        """Monitor was deactivated. Any open incident stays open."""
        async with self._locks[monitor_id]:
            if self._states.get(monitor_id) != MonitorState.MAINTENANCE:
                logger.info(f"Monitor {monitor_id} entered maintenance")
            self._states[monitor_id] = MonitorState.MAINTENANCE

    async def resume(self, monitor: Monitor) -> None:
        """Monitor was (re)activated; leave maintenance."""
        async with self._locks[monitor.id]:
            if self._states.get(monitor.id) in (None, MonitorState.MAINTENANCE):
                open_incident = await self._repository.get_open_incident(monitor.id)
                self._states[monitor.id] = (
                    MonitorState.DOWN if open_incident else MonitorState.UP
                )

    async def acknowledge(self, incident_id: str, actor: str) -> Optional[Incident]:
        """Mark an incident acknowledged. Does not change UP/DOWN state."""
        incident = await self._repository.get_incident(incident_id)
        if incident is None:
            return None
        async with self._locks[incident.monitor_id]:
            incident = await self._repository.get_incident(incident_id)
            if incident is None or incident.acknowledged:
                return incident
            acknowledged = incident.model_copy(
                update={
                    "acknowledged": True,
                    "acknowledged_at": self._clock.now(),
                    "acknowledged_by": actor,
                }
            )
            await self._write(
                lambda: self._repository.update_incident(acknowledged), "acknowledge incident"
            )
        logger.info(f"Incident {incident_id} acknowledged by {actor}")
        return acknowledged

    async def _load_state(self, monitor: Monitor) -> MonitorState:
        state = self._states.get(monitor.id)
        if state is None:
            if not monitor.is_active:
                state = MonitorState.MAINTENANCE
            elif await self._repository.get_open_incident(monitor.id):
                state = MonitorState.DOWN
            else:
                state = MonitorState.UP
            self._states[monitor.id] = state
        return state

    def _set_state(self, monitor_id: str, state: MonitorState) -> None:
        # A late heartbeat from before deactivation still opens/closes
        # incidents but does not leave maintenance.
        if self._states.get(monitor_id) != MonitorState.MAINTENANCE:
            self._states[monitor_id] = state

    async def _on_failure(self, monitor: Monitor, heartbeat: Heartbeat) -> Incident:
        now = self._clock.now()
        open_incident = await self._repository.get_open_incident(monitor.id)

        if open_incident is None:
            incident = Incident(
                monitor_id=monitor.id,
                start_time=heartbeat.created_at,
                notifications_sent=[now],
            )
            await self._write(lambda: self._repository.add_incident(incident), "open incident")
            self._set_state(monitor.id, MonitorState.DOWN)
            logger.warning(
                f"INCIDENT: {monitor.name} ({monitor.url}) is DOWN - {heartbeat.message}"
            )
            self._notify(monitor, incident, IncidentEvent.OPENED)
            return incident

        self._set_state(monitor.id, MonitorState.DOWN)
        if not self._reminder_due(open_incident, now):
            return open_incident

        incident = open_incident.model_copy(
            update={"notifications_sent": [*open_incident.notifications_sent, now]}
        )
        await self._write(lambda: self._repository.update_incident(incident), "record reminder")
        logger.warning(
            f"STILL DOWN: {monitor.name} ({monitor.url}) for "
            f"{format_duration(now - incident.start_time)} - {heartbeat.message}"
        )
        self._notify(monitor, incident, IncidentEvent.REMINDER)
        return incident

    async def _on_success(self, monitor: Monitor, heartbeat: Heartbeat) -> Optional[Incident]:
        open_incident = await self._repository.get_open_incident(monitor.id)
        if open_incident is None:
            self._set_state(monitor.id, MonitorState.UP)
            return None

        now = self._clock.now()
        end_time = max(heartbeat.created_at, open_incident.start_time)
        incident = open_incident.model_copy(
            update={
                "end_time": end_time,
                "resolved": True,
                "notifications_sent": [*open_incident.notifications_sent, now],
            }
        )
        await self._write(lambda: self._repository.update_incident(incident), "close incident")
        self._set_state(monitor.id, MonitorState.UP)
        logger.info(
            f"RESOLVED: {monitor.name} ({monitor.url}) is back UP "
            f"after {format_duration(end_time - incident.start_time)}"
        )
        self._notify(monitor, incident, IncidentEvent.CLOSED)
        return incident

    def _reminder_due(self, incident: Incident, now: datetime) -> bool:
        if not incident.notifications_sent:
            return True
        return now - max(incident.notifications_sent) >= self._reminder_interval

    async def _write(self, operation, description: str):
        return await retry_write(
            operation,
            attempts=self._write_attempts,
            delay=self._retry_delay,
            clock=self._clock,
            description=description,
        )

    def _notify(self, monitor: Monitor, incident: Incident, event: IncidentEvent) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.dispatch(monitor, incident, event)
        except Exception as e:
            logger.error(f"Failed to hand {event.value} event for {monitor.name} to notifier: {e}")
