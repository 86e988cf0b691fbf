"""
APScheduler integration: one periodic check job per active monitor, run under
a shared concurrency limit.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from uptimeguard.clock import Clock, SystemClock
from uptimeguard.config import Settings, get_settings
from uptimeguard.errors import RepositoryUnavailable
from uptimeguard.executor import CheckExecutor
from uptimeguard.incidents import IncidentTracker
from uptimeguard.probes import Probe
from uptimeguard.repository import Repository, retry_write
from uptimeguard.schemas import Monitor
from uptimeguard.stats import StatsAggregator

logger = logging.getLogger("uptimeguard.scheduler")

STATS_JOB_ID = "refresh_stats"
PRUNE_JOB_ID = "prune_heartbeats"


def _job_id(monitor_id: str) -> str:
    return f"check_{monitor_id}"


@dataclass
class _Entry:
    monitor: Monitor
    probe: Probe


class Scheduler:
    """Drives check cycles for the active monitors.

    A tick for a monitor whose previous cycle is still queued or running is
    skipped. At most `max_concurrent_checks` cycles run at once; the rest
    wait in arrival order.
    """

    def __init__(
        self,
        repository: Repository,
        executor: CheckExecutor,
        tracker: IncidentTracker,
        aggregator: Optional[StatsAggregator] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._executor = executor
        self._tracker = tracker
        self._aggregator = aggregator
        self._clock = clock or SystemClock()
        self._aps = AsyncIOScheduler()
        self._semaphore = asyncio.Semaphore(max(1, self._settings.max_concurrent_checks))
        self._entries: dict[str, _Entry] = {}
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._watch_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._aps.running

    @property
    def scheduled_ids(self) -> set[str]:
        return set(self._entries)

    def is_in_flight(self, monitor_id: str) -> bool:
        return monitor_id in self._in_flight

    def get_scheduled(self, monitor_id: str) -> Optional[Monitor]:
        entry = self._entries.get(monitor_id)
        return entry.monitor if entry else None

    def next_run_time(self, monitor_id: str) -> Optional[datetime]:
        job = self._aps.get_job(_job_id(monitor_id))
        return getattr(job, "next_run_time", None) if job else None

    # Timers

    async def schedule_monitor(self, monitor: Monitor) -> None:
        """Start periodic checks for a monitor, replacing any existing timer."""
        self._entries[monitor.id] = _Entry(monitor, self._executor.probe_for(monitor))
        self._add_job(monitor)
        await self._tracker.resume(monitor)
        logger.info(f"Scheduled monitor '{monitor.name}' (every {monitor.interval}s)")

    def unschedule_monitor(self, monitor_id: str) -> bool:
        """Stop the timer. A cycle already in flight still completes."""
        entry = self._entries.pop(monitor_id, None)
        try:
            self._aps.remove_job(_job_id(monitor_id))
        except JobLookupError:
            pass
        if entry is not None:
            logger.info(f"Unscheduled monitor '{entry.monitor.name}'")
        return entry is not None

    def reschedule_monitor(self, monitor: Monitor) -> None:
        """Swap the monitor's timer for one at its current interval."""
        self._entries[monitor.id] = _Entry(monitor, self._executor.probe_for(monitor))
        self._add_job(monitor)
        logger.info(f"Rescheduled monitor '{monitor.name}' (every {monitor.interval}s)")

    def _add_job(self, monitor: Monitor) -> None:
        options = {}
        if self._settings.check_on_start:
            options["next_run_time"] = datetime.now(timezone.utc)
        self._aps.add_job(
            self._tick,
            trigger=IntervalTrigger(seconds=monitor.interval),
            id=_job_id(monitor.id),
            args=[monitor.id],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **options,
        )

    # Check cycles

    async def _tick(self, monitor_id: str) -> None:
        self.trigger(monitor_id)

    def trigger(self, monitor_id: str) -> Optional[asyncio.Task]:
        """Start a cycle for a scheduled monitor unless one is already in flight."""
        entry = self._entries.get(monitor_id)
        if entry is None:
            return None
        if monitor_id in self._in_flight:
            logger.debug(f"Skipping tick for '{entry.monitor.name}': previous check not finished")
            return None
        self._in_flight.add(monitor_id)
        task = asyncio.get_running_loop().create_task(self._run_cycle(entry))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_pending(self) -> int:
        """Run one cycle for every scheduled monitor and wait for them."""
        tasks = [t for t in (self.trigger(mid) for mid in list(self._entries)) if t is not None]
        if tasks:
            await asyncio.gather(*tasks)
        return len(tasks)

    async def _run_cycle(self, entry: _Entry) -> None:
        monitor = entry.monitor
        try:
            async with self._semaphore:
                deadline = self._clock.now() + timedelta(seconds=monitor.interval)
                heartbeat = await self._executor.execute(
                    monitor, deadline=deadline, probe=entry.probe
                )
                await retry_write(
                    lambda: self._repository.add_heartbeat(heartbeat),
                    attempts=self._settings.repository_write_attempts,
                    delay=self._settings.repository_retry_delay,
                    clock=self._clock,
                    description=f"store heartbeat for '{monitor.name}'",
                )
                logger.debug(
                    f"Check '{monitor.name}': {heartbeat.status.value} "
                    f"({heartbeat.response_time}ms) {heartbeat.message}"
                )
                await self._tracker.observe(monitor, heartbeat)
        except RepositoryUnavailable as e:
            logger.error(f"Check cycle for '{monitor.name}' dropped, repository unavailable: {e}")
        except Exception as e:
            logger.error(f"Check cycle for '{monitor.name}' failed: {e}", exc_info=True)
        finally:
            self._in_flight.discard(monitor.id)

    # Active monitor set

    async def reconcile(self, monitors: Iterable[Monitor]) -> None:
        """Bring the scheduled set in line with a snapshot of active monitors."""
        active = {m.id: m for m in monitors if m.is_active}

        for monitor_id in list(self._entries):
            if monitor_id not in active:
                await self.deactivate(monitor_id)

        for monitor in active.values():
            await self.apply(monitor)

    async def apply(self, monitor: Monitor) -> None:
        """Apply one monitor's latest configuration to its timer."""
        if not monitor.is_active:
            await self.deactivate(monitor.id)
            return
        entry = self._entries.get(monitor.id)
        if entry is None:
            await self.schedule_monitor(monitor)
        elif entry.monitor.interval != monitor.interval:
            self.reschedule_monitor(monitor)
        elif entry.monitor != monitor:
            self._entries[monitor.id] = _Entry(monitor, self._executor.probe_for(monitor))

    async def deactivate(self, monitor_id: str) -> None:
        self.unschedule_monitor(monitor_id)
        await self._tracker.enter_maintenance(monitor_id)

    async def watch(self) -> None:
        """Reconcile on every change of the active monitor set until cancelled."""
        while True:
            try:
                async for snapshot in self._repository.watch_active_monitors():
                    await self.reconcile(snapshot)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Active monitor watch failed: {e}; restarting", exc_info=True)
                await self._clock.sleep(self._settings.monitor_poll_interval)

    # Housekeeping

    async def refresh_stats(self) -> None:
        if self._aggregator is None:
            return
        try:
            await self._aggregator.refresh_all()
        except RepositoryUnavailable as e:
            logger.error(f"Stats refresh skipped: {e}")

    async def prune_heartbeats(self) -> int:
        """Delete heartbeats older than the retention period."""
        cutoff = self._clock.now() - timedelta(days=self._settings.heartbeat_retention_days)
        try:
            removed = await self._repository.prune_heartbeats(cutoff)
        except RepositoryUnavailable as e:
            logger.error(f"Heartbeat pruning skipped: {e}")
            return 0
        if removed:
            logger.info(f"Pruned {removed} heartbeat(s) older than {cutoff.isoformat()}")
        return removed

    # Lifecycle

    async def start(self) -> None:
        """Load the active monitors, schedule them and begin watching for changes."""
        monitors = await self._repository.list_active_monitors()
        await self.reconcile(monitors)

        if self._aggregator is not None:
            self._aps.add_job(
                self.refresh_stats,
                trigger=IntervalTrigger(seconds=self._settings.stats_refresh_interval),
                id=STATS_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        # Retention pruning every hour
        self._aps.add_job(
            self.prune_heartbeats,
            trigger=IntervalTrigger(hours=1),
            id=PRUNE_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self._aps.start()
        self._watch_task = asyncio.get_running_loop().create_task(self.watch())
        logger.info(f"Scheduler started with {len(self._entries)} monitor(s)")

    async def shutdown(self) -> None:
        """Stop timers and the watcher, then let in-flight cycles finish."""
        if self._watch_task is not None:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None

        if self._aps.running:
            self._aps.shutdown(wait=False)

        pending = set(self._tasks)
        if pending:
            logger.info(f"Waiting for {len(pending)} in-flight check(s) to finish")
            _, not_done = await asyncio.wait(pending, timeout=self._settings.drain_timeout)
            for task in not_done:
                task.cancel()
            if not_done:
                logger.warning(f"Abandoned {len(not_done)} check(s) still running at shutdown")
        logger.info("Scheduler stopped")
