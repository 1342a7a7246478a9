import logging
from typing import Optional

from channelflow.models.event import Event
from channelflow.models.funnel import FunnelDefinition, StageTransition
from channelflow.store.base import SequenceStore

logger = logging.getLogger(__name__)


class TriggerMatcher:
    """
    Decides which funnel stage an event moves a lead into.

    Stages are scanned in definition order and the first stage listing the
    trigger wins. Leads never move backwards: an event matching the lead's
    current stage or an earlier one is ignored.
    """

    def __init__(self, store: SequenceStore):
        self.store = store

    async def accept(self, event: Event) -> bool:
        """Record the event; False means it was seen before and must be ignored."""
        accepted = await self.store.record_event(event)
        if not accepted:
            logger.info(f"[TRIGGER] Duplicate event {event.dedupe_key} ignored")
        return accepted

    async def forget(self, event: Event) -> None:
        """Undo accept() for an event whose handling failed, so a redelivery is retried."""
        await self.store.forget_event(event)
        logger.info(f"[TRIGGER] Event {event.dedupe_key} released for redelivery")

    async def match(self, event: Event, funnel: FunnelDefinition) -> Optional[StageTransition]:
        if event.funnel_id is not None and event.funnel_id != funnel.funnel_id:
            return None

        matched = funnel.first_match(event.trigger_id)
        if matched is None:
            logger.debug(f"[TRIGGER] '{event.trigger_id}' matches no stage of funnel {funnel.funnel_id}")
            return None
        target_index, target_stage = matched

        state = await self.store.get_lead_state(event.lead_id, funnel.funnel_id)
        from_stage = None
        if state is not None:
            try:
                current_index = funnel.stage_index(state.current_stage_name)
            except KeyError:
                # stage was removed from the definition; any match moves the lead on
                logger.warning(
                    f"[TRIGGER] Lead {event.lead_id} is at unknown stage '{state.current_stage_name}' "
                    f"of funnel {funnel.funnel_id}"
                )
                current_index = -1
            if current_index >= target_index:
                logger.info(
                    f"[TRIGGER] Lead {event.lead_id} already at '{state.current_stage_name}', "
                    f"'{event.trigger_id}' -> '{target_stage.name}' ignored"
                )
                return None
            from_stage = state.current_stage_name

        transition = StageTransition(
            lead_id=event.lead_id,
            funnel_id=funnel.funnel_id,
            from_stage=from_stage,
            to_stage=target_stage.name,
            trigger_id=event.trigger_id,
            occurred_at=event.occurred_at,
        )
        logger.info(f"[TRIGGER] {transition.model_dump(mode='json')}")
        return transition
