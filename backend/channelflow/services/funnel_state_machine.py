import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from channelflow.channels.registry import ChannelRegistry
from channelflow.config import Settings
from channelflow.exceptions import (
    ConfigurationError,
    PermanentChannelError,
    StoreConflictError,
    TransientChannelError,
)
from channelflow.models.funnel import FunnelDefinition, LeadFunnelState, Stage, StageTransition, StageVisit
from channelflow.services.backoff import BackoffPolicy
from channelflow.store.base import SequenceStore

logger = logging.getLogger(__name__)


def split_action(action_id: str, default_channel: str) -> Tuple[str, str]:
    """'social:post-launch' -> ('social', 'post-launch'); bare ids go to the default channel."""
    channel, sep, action = action_id.partition(":")
    if not sep:
        return default_channel, action_id
    return channel, action


class FunnelStateMachine:
    """
    Applies stage transitions to a lead's funnel state and runs the stage's
    entry actions, each exactly once per transition.

    The state is written before any action runs. Action failures do not roll
    the transition back; they are recorded in the state's last_error.
    """

    def __init__(
        self,
        store: SequenceStore,
        channels: ChannelRegistry,
        settings: Settings,
        backoff: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.channels = channels
        self.default_channel = settings.DEFAULT_ACTION_CHANNEL
        self.action_max_attempts = settings.ACTION_MAX_ATTEMPTS
        self.conflict_retries = settings.STORE_CONFLICT_RETRIES
        self.backoff = backoff or BackoffPolicy(
            base_seconds=settings.ACTION_RETRY_BASE_SECONDS,
            cap_seconds=settings.RETRY_CAP_SECONDS,
            jitter=settings.RETRY_JITTER,
        )
        self._sleep = sleep

    async def apply(self, transition: StageTransition, funnel: FunnelDefinition) -> Optional[LeadFunnelState]:
        """
        Move the lead to transition.to_stage and run that stage's actions.
        Returns the stored state, or None if a concurrent writer already moved
        the lead to the target stage or past it.
        """
        target_index = funnel.stage_index(transition.to_stage)
        stage = funnel.stages[target_index]

        for _ in range(self.conflict_retries + 1):
            existing = await self.store.get_lead_state(transition.lead_id, transition.funnel_id)
            if existing is not None and existing.current_stage_name != transition.from_stage:
                try:
                    if funnel.stage_index(existing.current_stage_name) >= target_index:
                        logger.info(
                            f"[FUNNEL] Lead {transition.lead_id} moved to '{existing.current_stage_name}' "
                            f"concurrently, transition to '{transition.to_stage}' dropped"
                        )
                        return None
                except KeyError:
                    pass

            visit = StageVisit(
                stage_name=stage.name,
                entered_at=transition.occurred_at,
                trigger_id=transition.trigger_id,
            )
            if existing is None:
                state = LeadFunnelState(
                    lead_id=transition.lead_id,
                    funnel_id=transition.funnel_id,
                    current_stage_name=stage.name,
                    entered_at=transition.occurred_at,
                    history=[visit],
                )
                expected_version = None
            else:
                state = existing.model_copy(deep=True)
                state.current_stage_name = stage.name
                state.entered_at = transition.occurred_at
                state.history.append(visit)
                state.last_error = None
                expected_version = existing.version
            try:
                saved = await self.store.put_lead_state(state, expected_version)
                break
            except StoreConflictError:
                logger.warning(f"[FUNNEL] Conflict writing state of lead {transition.lead_id}, re-reading")
        else:
            raise StoreConflictError("LeadFunnelState", f"{transition.lead_id}/{transition.funnel_id}")

        logger.info(
            f"[FUNNEL] Lead {transition.lead_id} entered '{stage.name}' of funnel {transition.funnel_id} "
            f"(from '{transition.from_stage}', trigger '{transition.trigger_id}')"
        )

        errors = await self._run_actions(stage, transition)
        if errors:
            saved = await self._record_errors(saved, errors)
        return saved

    async def _run_actions(self, stage: Stage, transition: StageTransition) -> List[str]:
        errors = []
        for action_id in stage.actions:
            error = await self._run_action(action_id, stage, transition)
            if error:
                errors.append(f"{action_id}: {error}")
        return errors

    async def _run_action(self, action_id: str, stage: Stage, transition: StageTransition) -> Optional[str]:
        channel, action = split_action(action_id, self.default_channel)
        payload = {
            "lead_id": transition.lead_id,
            "funnel_id": transition.funnel_id,
            "stage": stage.name,
            "from_stage": transition.from_stage,
            "trigger_id": transition.trigger_id,
            "occurred_at": transition.occurred_at.isoformat(),
            "idempotency_key": f"{transition.lead_id}:{transition.funnel_id}:{stage.name}:"
                               f"{transition.occurred_at.isoformat()}:{action_id}",
        }
        for attempt in range(1, self.action_max_attempts + 1):
            try:
                await self.channels.get(channel).invoke(action, payload)
                logger.info(f"[FUNNEL] Action {action_id} done for lead {transition.lead_id} (attempt {attempt})")
                return None
            except (PermanentChannelError, ConfigurationError) as e:
                logger.error(f"[FUNNEL] Action {action_id} failed permanently for lead {transition.lead_id}: {e}")
                return e.message
            except TransientChannelError as e:
                if attempt == self.action_max_attempts:
                    logger.error(
                        f"[FUNNEL] Action {action_id} for lead {transition.lead_id} "
                        f"gave up after {attempt} attempts: {e}"
                    )
                    return f"gave up after {attempt} attempts: {e.message}"
                delay = self.backoff.delay(attempt).total_seconds()
                logger.warning(
                    f"[FUNNEL] Action {action_id} for lead {transition.lead_id} failed "
                    f"(attempt {attempt}/{self.action_max_attempts}), retrying in {delay:.1f}s: {e}"
                )
                await self._sleep(delay)
        return None

    async def _record_errors(self, state: LeadFunnelState, errors: List[str]) -> LeadFunnelState:
        for _ in range(self.conflict_retries + 1):
            state.last_error = "; ".join(errors)
            try:
                return await self.store.put_lead_state(state, state.version)
            except StoreConflictError:
                fresh = await self.store.get_lead_state(state.lead_id, state.funnel_id)
                if fresh is None:
                    raise
                state = fresh
        raise StoreConflictError("LeadFunnelState", f"{state.lead_id}/{state.funnel_id}")
