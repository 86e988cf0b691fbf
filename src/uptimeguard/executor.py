"""
Check executor. Runs one check cycle for a monitor and turns its probe attempts
into a single heartbeat.
"""
import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Optional

from uptimeguard.clock import Clock, SystemClock
from uptimeguard.errors import AssertionMismatch, ProbeError, RepositoryUnavailable
from uptimeguard.probes import Probe, build_probe
from uptimeguard.probes.base import elapsed_ms
from uptimeguard.repository import Repository
from uptimeguard.schemas import Heartbeat, HeartbeatStatus, Monitor, MonitorType

logger = logging.getLogger("uptimeguard.executor")


class CheckExecutor:
    def __init__(
        self,
        repository: Optional[Repository] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or SystemClock()
        self._probes: dict[MonitorType, Probe] = {}

    def probe_for(self, monitor: Monitor) -> Probe:
        probe = self._probes.get(monitor.type)
        if probe is None:
            probe = build_probe(monitor.type, self._repository, self._clock)
            self._probes[monitor.type] = probe
        return probe

    async def execute(
        self,
        monitor: Monitor,
        deadline: Optional[datetime] = None,
        probe: Optional[Probe] = None,
    ) -> Heartbeat:
        """Run one check cycle and return its single heartbeat.

        A failed attempt is retried up to `monitor.retries` times, spaced by
        `monitor.retry_interval`. Each attempt gets the full `monitor.timeout`.
        Retries are not cut short by `deadline`; running past it is logged once.
        """
        probe = probe or self.probe_for(monitor)
        attempts = monitor.retries + 1 if probe.retryable else 1
        overran = False

        for attempt in range(1, attempts + 1):
            heartbeat = await self._attempt(monitor, probe)
            if heartbeat.status == HeartbeatStatus.UP:
                return heartbeat
            if attempt == attempts:
                break
            next_start = self._clock.now() + timedelta(seconds=monitor.retry_interval)
            if deadline is not None and next_start > deadline and not overran:
                overran = True
                logger.warning(
                    f"Retries for '{monitor.name}' run past its next scheduled check; "
                    f"that tick will be skipped"
                )
            logger.info(
                f"Check for '{monitor.name}' failed (attempt {attempt}/{attempts}): "
                f"{heartbeat.message}; retrying in {monitor.retry_interval}s"
            )
            await self._clock.sleep(monitor.retry_interval)

        return heartbeat

    async def _attempt(self, monitor: Monitor, probe: Probe) -> Heartbeat:
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(probe.check(monitor), timeout=monitor.timeout)
        except asyncio.TimeoutError:
            return self._down(monitor, f"Check timed out after {monitor.timeout}s")
        except AssertionMismatch as e:
            return self._down(
                monitor, e.message, response_time=e.response_time, status_code=e.status_code
            )
        except ProbeError as e:
            return self._down(monitor, e.message, status_code=e.status_code)
        except RepositoryUnavailable:
            raise
        except Exception as e:
            logger.warning(f"Probe for '{monitor.name}' raised {type(e).__name__}: {e}")
            return self._down(monitor, f"Unexpected error: {str(e)[:200]}")

        response_time = result.response_time
        if response_time is None:
            response_time = elapsed_ms(start)
        return Heartbeat(
            monitor_id=monitor.id,
            status=HeartbeatStatus.UP,
            response_time=response_time,
            status_code=result.status_code,
            message=result.message,
            ssl_info=result.ssl_info,
            created_at=self._clock.now(),
        )

    def _down(
        self,
        monitor: Monitor,
        message: str,
        response_time: Optional[int] = None,
        status_code: Optional[int] = None,
    ) -> Heartbeat:
        return Heartbeat(
            monitor_id=monitor.id,
            status=HeartbeatStatus.DOWN,
            response_time=response_time,
            status_code=status_code,
            message=message,
            created_at=self._clock.now(),
        )
