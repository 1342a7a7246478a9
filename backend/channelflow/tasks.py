import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from channelflow.bootstrap import Services, build_services
from channelflow.celery_config import celery_app
from channelflow.channels.registry import ChannelRegistry
from channelflow.config import get_settings
from channelflow.db.init import init_db
from channelflow.models.event import Event
from channelflow.models.journal import DispatchOutcome
from channelflow.store.mongo import MongoSequenceStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def worker_services():
    """Services bound to the current task's event loop."""
    settings = get_settings()
    client = await init_db(settings)
    channels = ChannelRegistry.from_settings(settings)
    try:
        yield build_services(settings, MongoSequenceStore(), channels)
    finally:
        await channels.aclose()
        client.close()


async def run_tick(services: Services) -> Dict[str, int]:
    """One scheduler pass: rebuild the queue from the store and dispatch what is due."""
    queued = await services.campaigns.recover()
    outcomes = await services.campaigns.tick()
    summary = {"queued": queued, "dispatched": 0, "skipped": 0}
    for outcome in DispatchOutcome:
        summary[outcome.value] = 0
    for outcome in outcomes:
        if outcome is None:
            summary["skipped"] += 1
        else:
            summary["dispatched"] += 1
            summary[outcome.value] += 1
    return summary


@celery_app.task(name="channelflow.tasks.tick_campaigns_task", acks_late=True)
def tick_campaigns_task() -> Dict[str, int]:
    """
    Periodic task dispatching every campaign step that is due.
    Claims in the store keep overlapping ticks from dispatching a run twice.
    """

    async def tick():
        async with worker_services() as services:
            return await run_tick(services)

    try:
        logger.info("=== TICK_CAMPAIGNS_TASK STARTED ===")
        summary = asyncio.run(tick())
        logger.info(f"=== TICK_CAMPAIGNS_TASK COMPLETED === {summary}")
        return summary
    except Exception as e:
        logger.error(f"Error in tick_campaigns_task: {e}", exc_info=True)
        raise


@celery_app.task(name="channelflow.tasks.ingest_event_task", acks_late=True)
def ingest_event_task(event_data: Dict[str, Any]) -> Dict[str, Any]:
    """Process one queued event against the funnels."""
    event = Event.model_validate(event_data)

    async def ingest():
        async with worker_services() as services:
            return await services.funnels.ingest(event)

    try:
        logger.info(f"[EVENTS] Ingesting {event.trigger_id} for lead {event.lead_id}")
        changed = asyncio.run(ingest())
        return {
            "lead_id": event.lead_id,
            "trigger_id": event.trigger_id,
            "stages": {state.funnel_id: state.current_stage_name for state in changed},
        }
    except Exception as e:
        logger.error(f"Error in ingest_event_task for lead {event.lead_id}: {e}", exc_info=True)
        raise
