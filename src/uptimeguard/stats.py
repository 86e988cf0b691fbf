"""
Uptime statistics: a recomputable projection of heartbeats and incidents.
"""
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Optional

from uptimeguard.clock import Clock, SystemClock
from uptimeguard.repository import Repository
from uptimeguard.schemas import (
    Heartbeat,
    HeartbeatStatus,
    Incident,
    StatsPeriod,
    UptimeStats,
)

logger = logging.getLogger("uptimeguard.stats")


def period_start(period: StatsPeriod, now: datetime) -> Optional[datetime]:
    lookback = period.lookback
    return now - lookback if lookback is not None else None


def compute_uptime_stats(
    monitor_id: str,
    period: StatsPeriod,
    now: datetime,
    heartbeats: Iterable[Heartbeat],
    incidents: Iterable[Incident],
) -> UptimeStats:
    """Aggregate the heartbeats and incidents that fall in `period` ending at `now`.

    Only UP and DOWN heartbeats count as checks. With no checks the uptime is
    100%. The result depends only on the arguments.
    """
    cutoff = period_start(period, now)

    def in_window(ts: datetime) -> bool:
        return (cutoff is None or ts > cutoff) and ts <= now

    successful = 0
    failed = 0
    response_times: list[int] = []
    for heartbeat in heartbeats:
        if heartbeat.monitor_id != monitor_id or not in_window(heartbeat.created_at):
            continue
        if heartbeat.status == HeartbeatStatus.UP:
            successful += 1
        elif heartbeat.status == HeartbeatStatus.DOWN:
            failed += 1
        else:
            continue
        if heartbeat.response_time is not None:
            response_times.append(heartbeat.response_time)

    total = successful + failed
    uptime = successful / total * 100 if total > 0 else 100.0
    avg_response_time = sum(response_times) / len(response_times) if response_times else 0.0

    overlapping = sorted(
        (
            i
            for i in incidents
            if i.monitor_id == monitor_id
            and i.start_time <= now
            and (cutoff is None or i.end_time is None or i.end_time >= cutoff)
        ),
        key=lambda i: (i.start_time, i.id),
    )

    return UptimeStats(
        monitor_id=monitor_id,
        period=period,
        uptime_percentage=uptime,
        total_checks=total,
        successful_checks=successful,
        failed_checks=failed,
        avg_response_time=avg_response_time,
        incidents=overlapping,
        created_at=now,
    )


class StatsAggregator:
    """Computes stats from the repository with a full re-scan of the window."""

    def __init__(self, repository: Repository, clock: Optional[Clock] = None) -> None:
        self._repository = repository
        self._clock = clock or SystemClock()

    async def compute(
        self, monitor_id: str, period: StatsPeriod, now: Optional[datetime] = None
    ) -> UptimeStats:
        now = now or self._clock.now()
        cutoff = period_start(period, now)
        heartbeats = await self._repository.list_heartbeats(monitor_id, since=cutoff, until=now)
        incidents = await self._repository.list_incidents(monitor_id, since=cutoff)
        return compute_uptime_stats(monitor_id, period, now, heartbeats, incidents)

    async def refresh(self, monitor_id: str, now: Optional[datetime] = None) -> list[UptimeStats]:
        """Recompute and store every period for one monitor."""
        now = now or self._clock.now()
        heartbeats = await self._repository.list_heartbeats(monitor_id, until=now)
        incidents = await self._repository.list_incidents(monitor_id)
        results = []
        for period in StatsPeriod:
            stats = compute_uptime_stats(monitor_id, period, now, heartbeats, incidents)
            await self._repository.save_stats(stats)
            results.append(stats)
        return results

    async def refresh_all(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock.now()
        monitors = await self._repository.list_monitors()
        for monitor in monitors:
            await self.refresh(monitor.id, now)
        logger.info(f"Recomputed uptime stats for {len(monitors)} monitor(s)")
        return len(monitors)
