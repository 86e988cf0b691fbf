from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import ValidationError

from uptimeguard.dependencies import Components, get_components
from uptimeguard.schemas import (
    Heartbeat,
    Incident,
    Monitor,
    MonitorCreate,
    MonitorType,
    MonitorUpdate,
    StatsPeriod,
    UptimeStats,
)

router = APIRouter(prefix="/api/monitors", tags=["monitors"])


async def _get_or_404(components: Components, monitor_id: str) -> Monitor:
    monitor = await components.repository.get_monitor(monitor_id)
    if not monitor:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Monitor not found",
        )
    return monitor


async def _apply_schedule(components: Components, monitor: Monitor) -> None:
    # The watch would pick the change up anyway; this just avoids the poll delay.
    if components.scheduler.running:
        await components.scheduler.apply(monitor)


@router.get("", response_model=list[Monitor])
async def list_monitors(components: Components = Depends(get_components)):
    monitors = await components.repository.list_monitors()
    return sorted(monitors, key=lambda m: m.created_at, reverse=True)


@router.post("", response_model=Monitor, status_code=201)
async def create_monitor(
    body: MonitorCreate,
    components: Components = Depends(get_components),
):
    now = components.clock.now()
    monitor = Monitor(**body.model_dump(), created_at=now, updated_at=now)
    await components.repository.add_monitor(monitor)
    await _apply_schedule(components, monitor)
    return monitor


@router.get("/{monitor_id}", response_model=Monitor)
async def get_monitor(
    monitor_id: str,
    components: Components = Depends(get_components),
):
    return await _get_or_404(components, monitor_id)


@router.patch("/{monitor_id}", response_model=Monitor)
async def update_monitor(
    monitor_id: str,
    body: MonitorUpdate,
    components: Components = Depends(get_components),
):
    monitor = await _get_or_404(components, monitor_id)

    update_data = body.model_dump(exclude_unset=True)
    try:
        updated = Monitor.model_validate(
            {**monitor.model_dump(), **update_data, "updated_at": components.clock.now()}
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=e.errors(include_url=False, include_context=False, include_input=False),
        )
    if updated.type == MonitorType.KEYWORD and not updated.expected_string:
        raise HTTPException(status_code=422, detail="Keyword monitors require expected_string")

    await components.repository.update_monitor(updated)
    await _apply_schedule(components, updated)
    return updated


@router.delete("/{monitor_id}", status_code=204)
async def delete_monitor(
    monitor_id: str,
    components: Components = Depends(get_components),
):
    await _get_or_404(components, monitor_id)
    components.scheduler.unschedule_monitor(monitor_id)
    await components.repository.delete_monitor(monitor_id)
    return Response(status_code=204)


@router.post("/{monitor_id}/pause", response_model=Monitor)
async def pause_monitor(
    monitor_id: str,
    components: Components = Depends(get_components),
):
    await _get_or_404(components, monitor_id)
    monitor = await components.repository.set_monitor_active(monitor_id, False)
    await _apply_schedule(components, monitor)
    return monitor


@router.post("/{monitor_id}/resume", response_model=Monitor)
async def resume_monitor(
    monitor_id: str,
    components: Components = Depends(get_components),
):
    await _get_or_404(components, monitor_id)
    monitor = await components.repository.set_monitor_active(monitor_id, True)
    await _apply_schedule(components, monitor)
    return monitor


@router.get("/{monitor_id}/heartbeats", response_model=list[Heartbeat])
async def list_heartbeats(
    monitor_id: str,
    hours: int = 24,
    limit: int = 100,
    components: Components = Depends(get_components),
):
    await _get_or_404(components, monitor_id)
    cutoff = components.clock.now() - timedelta(hours=hours)
    heartbeats = await components.repository.list_heartbeats(
        monitor_id, since=cutoff, limit=limit
    )
    return list(reversed(heartbeats))


@router.get("/{monitor_id}/incidents", response_model=list[Incident])
async def list_incidents(
    monitor_id: str,
    components: Components = Depends(get_components),
):
    await _get_or_404(components, monitor_id)
    incidents = await components.repository.list_incidents(monitor_id)
    return sorted(incidents, key=lambda i: i.start_time, reverse=True)


@router.get("/{monitor_id}/stats", response_model=list[UptimeStats])
async def get_all_stats(
    monitor_id: str,
    components: Components = Depends(get_components),
):
    await _get_or_404(components, monitor_id)
    return await components.aggregator.refresh(monitor_id)


@router.get("/{monitor_id}/stats/{period}", response_model=UptimeStats)
async def get_stats(
    monitor_id: str,
    period: StatsPeriod,
    components: Components = Depends(get_components),
):
    await _get_or_404(components, monitor_id)
    return await components.aggregator.compute(monitor_id, period)
