from datetime import timedelta
from typing import Optional

from uptimeguard.clock import Clock, SystemClock
from uptimeguard.errors import ConnectionFailure
from uptimeguard.probes.base import Probe, ProbeResult
from uptimeguard.repository import Repository
from uptimeguard.schemas import Monitor


class PassiveHeartbeatProbe(Probe):
    """Checks that the monitored system pushed a heartbeat recently.

    The signal must have arrived within `interval + timeout`. A monitor that
    has never received a push gets the same grace window from its creation.
    """

    retryable = False

    def __init__(self, repository: Repository, clock: Optional[Clock] = None) -> None:
        self._repository = repository
        self._clock = clock or SystemClock()

    async def check(self, monitor: Monitor) -> ProbeResult:
        window = timedelta(seconds=monitor.interval + monitor.timeout)
        now = self._clock.now()
        last_push = await self._repository.get_last_push(monitor.id)

        if last_push is None:
            if now - monitor.created_at <= window:
                return ProbeResult(message="Awaiting first heartbeat")
            raise ConnectionFailure("No heartbeat received yet")

        age = now - last_push
        if age > window:
            raise ConnectionFailure(
                f"No heartbeat received in the last {int(window.total_seconds())}s "
                f"(last {int(age.total_seconds())}s ago)"
            )
        return ProbeResult(message=f"Last heartbeat {int(age.total_seconds())}s ago")
