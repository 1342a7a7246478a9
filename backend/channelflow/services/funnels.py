import asyncio
import logging
from typing import Iterable, List

from channelflow.config import Settings
from channelflow.exceptions import NotFoundError
from channelflow.models.event import Event
from channelflow.models.funnel import FunnelDefinition, LeadFunnelState
from channelflow.services.funnel_state_machine import FunnelStateMachine
from channelflow.services.locks import KeyedLocks
from channelflow.services.trigger_matcher import TriggerMatcher
from channelflow.store.base import SequenceStore

logger = logging.getLogger(__name__)


class FunnelOrchestrator:
    """
    Event ingress for funnels.

    Events of one lead are handled one at a time; different leads are handled
    concurrently, bounded by MAX_CONCURRENCY.
    """

    def __init__(
        self,
        store: SequenceStore,
        matcher: TriggerMatcher,
        state_machine: FunnelStateMachine,
        settings: Settings,
    ):
        self.store = store
        self.matcher = matcher
        self.state_machine = state_machine
        self._locks = KeyedLocks()
        self._semaphore = asyncio.Semaphore(max(1, settings.MAX_CONCURRENCY))

    async def register_funnel(self, funnel: FunnelDefinition) -> FunnelDefinition:
        saved = await self.store.save_funnel(funnel)
        logger.info(f"[FUNNEL] Registered funnel {funnel.funnel_id} with stages {[s.name for s in funnel.stages]}")
        return saved

    async def get_funnel(self, funnel_id: str) -> FunnelDefinition:
        funnel = await self.store.get_funnel(funnel_id)
        if funnel is None:
            raise NotFoundError("Funnel", funnel_id)
        return funnel

    async def get_state(self, lead_id: str, funnel_id: str) -> LeadFunnelState:
        state = await self.store.get_lead_state(lead_id, funnel_id)
        if state is None:
            raise NotFoundError("LeadFunnelState", f"{lead_id}/{funnel_id}")
        return state

    async def ingest(self, event: Event) -> List[LeadFunnelState]:
        """
        Match an event against its funnel, or every funnel when it names none,
        and apply the resulting transitions. Returns the states that changed.
        A failed event is released so that its redelivery is processed again.
        """
        async with self._locks.hold(event.lead_id):
            async with self._semaphore:
                if event.funnel_id is not None:
                    funnels = [await self.get_funnel(event.funnel_id)]
                else:
                    funnels = await self.store.list_funnels()

                if not await self.matcher.accept(event):
                    return []

                changed = []
                try:
                    for funnel in funnels:
                        transition = await self.matcher.match(event, funnel)
                        if transition is None:
                            continue
                        state = await self.state_machine.apply(transition, funnel)
                        if state is not None:
                            changed.append(state)
                except Exception as e:
                    logger.error(f"[FUNNEL] Failed to apply event {event.dedupe_key}: {e}")
                    await self.matcher.forget(event)
                    raise
                return changed

    async def ingest_many(self, events: Iterable[Event]) -> List[LeadFunnelState]:
        ordered = sorted(events, key=lambda e: e.occurred_at)
        results = await asyncio.gather(*(self.ingest(event) for event in ordered), return_exceptions=True)
        changed = []
        for event, result in zip(ordered, results):
            if isinstance(result, Exception):
                logger.error(f"[CONCURRENT_ERROR] Event {event.dedupe_key} failed: {result}", exc_info=result)
            else:
                changed.extend(result)
        return changed
