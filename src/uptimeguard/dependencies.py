"""
Wiring of the monitoring components and the FastAPI dependencies that hand
them to the routers.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status

from uptimeguard.clock import Clock, SystemClock
from uptimeguard.config import Settings
from uptimeguard.executor import CheckExecutor
from uptimeguard.incidents import IncidentTracker
from uptimeguard.notifications import NotificationDispatcher
from uptimeguard.repository import Repository
from uptimeguard.scheduler import Scheduler
from uptimeguard.stats import StatsAggregator


@dataclass
class Components:
    repository: Repository
    clock: Clock
    dispatcher: NotificationDispatcher
    executor: CheckExecutor
    tracker: IncidentTracker
    aggregator: StatsAggregator
    scheduler: Scheduler


def build_components(
    repository: Repository,
    settings: Settings,
    clock: Optional[Clock] = None,
) -> Components:
    clock = clock or SystemClock()
    dispatcher = NotificationDispatcher(settings)
    executor = CheckExecutor(repository, clock)
    tracker = IncidentTracker(repository, dispatcher, clock, settings)
    aggregator = StatsAggregator(repository, clock)
    scheduler = Scheduler(repository, executor, tracker, aggregator, clock, settings)
    return Components(
        repository=repository,
        clock=clock,
        dispatcher=dispatcher,
        executor=executor,
        tracker=tracker,
        aggregator=aggregator,
        scheduler=scheduler,
    )


def get_components(request: Request) -> Components:
    components = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Monitoring service is not running",
        )
    return components
