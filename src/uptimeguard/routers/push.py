"""
Push endpoint for passive (HEARTBEAT) monitors. The monitored job calls it
on every run; the passive probe reports DOWN when the calls stop.
"""
from fastapi import APIRouter, Depends, HTTPException, status

from uptimeguard.dependencies import Components, get_components
from uptimeguard.schemas import MonitorType

router = APIRouter(prefix="/api/push", tags=["push"])


@router.api_route("/{monitor_id}", methods=["GET", "POST"])
async def receive_push(
    monitor_id: str,
    components: Components = Depends(get_components),
):
    monitor = await components.repository.get_monitor(monitor_id)
    if not monitor:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Monitor not found")
    if monitor.type != MonitorType.HEARTBEAT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Monitor does not accept pushes",
        )

    received_at = components.clock.now()
    await components.repository.record_push(monitor_id, received_at)
    return {"ok": True, "monitor_id": monitor_id, "received_at": received_at.isoformat()}
