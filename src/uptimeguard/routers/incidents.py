from fastapi import APIRouter, Depends, HTTPException, status

from uptimeguard.dependencies import Components, get_components
from uptimeguard.schemas import AcknowledgeRequest, Incident

router = APIRouter(prefix="/api/incidents", tags=["incidents"])


@router.get("/{incident_id}", response_model=Incident)
async def get_incident(
    incident_id: str,
    components: Components = Depends(get_components),
):
    incident = await components.repository.get_incident(incident_id)
    if not incident:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Incident not found")
    return incident


@router.post("/{incident_id}/acknowledge", response_model=Incident)
async def acknowledge_incident(
    incident_id: str,
    body: AcknowledgeRequest,
    components: Components = Depends(get_components),
):
    incident = await components.tracker.acknowledge(incident_id, body.actor)
    if not incident:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Incident not found")
    return incident
