import logging
from typing import List

from fastapi import APIRouter, Depends

from channelflow.api.deps import get_services, http_error
from channelflow.bootstrap import Services
from channelflow.exceptions import ChannelflowError
from channelflow.models.event import Event
from channelflow.models.funnel import FunnelDefinition, LeadFunnelState

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/funnels", response_model=FunnelDefinition, status_code=201)
async def create_funnel(funnel: FunnelDefinition, services: Services = Depends(get_services)):
    return await services.funnels.register_funnel(funnel)


@router.get("/funnels/{funnel_id}", response_model=FunnelDefinition)
async def get_funnel(funnel_id: str, services: Services = Depends(get_services)):
    try:
        return await services.funnels.get_funnel(funnel_id)
    except ChannelflowError as e:
        raise http_error(e)


@router.get("/funnels/{funnel_id}/leads/{lead_id}", response_model=LeadFunnelState)
async def get_lead_state(funnel_id: str, lead_id: str, services: Services = Depends(get_services)):
    try:
        return await services.funnels.get_state(lead_id, funnel_id)
    except ChannelflowError as e:
        raise http_error(e)


@router.post("/events", response_model=List[LeadFunnelState])
async def ingest_event(event: Event, services: Services = Depends(get_services)):
    """Ingest an event and return the funnel states it changed."""
    logger.info(f"[EVENTS] {event.trigger_id} for lead {event.lead_id}")
    try:
        return await services.funnels.ingest(event)
    except ChannelflowError as e:
        raise http_error(e)


@router.post("/events/queue", status_code=202)
async def queue_event(event: Event):
    """Hand an event to the Celery workers instead of processing it inline."""
    from channelflow.tasks import ingest_event_task

    task = ingest_event_task.delay(event.model_dump(mode="json"))
    logger.info(f"[EVENTS] Queued {event.trigger_id} for lead {event.lead_id} as task {task.id}")
    return {"message": "Event queued", "task_id": task.id, "dedupe_key": event.dedupe_key}
