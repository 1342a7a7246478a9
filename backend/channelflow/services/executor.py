import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from channelflow.channels.registry import ChannelRegistry
from channelflow.config import Settings
from channelflow.exceptions import (
    ConfigurationError,
    NotFoundError,
    PermanentChannelError,
    StoreConflictError,
    TransientChannelError,
)
from channelflow.models.campaign import Channel, CampaignDefinition, CampaignRun, CampaignStep, RunStatus
from channelflow.models.journal import DispatchAttempt, DispatchOutcome
from channelflow.services.backoff import BackoffPolicy
from channelflow.services.notifications import FailureNotifier, LoggingFailureNotifier
from channelflow.services.strategies import NoPersonalization, PersonalizationStrategy
from channelflow.services.tracking import TrackingLinks
from channelflow.store.base import SequenceStore

logger = logging.getLogger(__name__)


class Executor:
    """
    Dispatches one campaign step to its channel and records the outcome.

    A run is claimed in the store before its channel is invoked, so two workers
    sharing a store never dispatch the same run at the same time. The outcome is
    then applied to a fresh copy of the run; if the run was cancelled meanwhile
    the outcome is journaled as discarded and the run is left untouched.
    """

    def __init__(
        self,
        store: SequenceStore,
        channels: ChannelRegistry,
        settings: Settings,
        backoff: Optional[BackoffPolicy] = None,
        personalization: Optional[PersonalizationStrategy] = None,
        tracking: Optional[TrackingLinks] = None,
        notifier: Optional[FailureNotifier] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.channels = channels
        self.max_attempts = settings.MAX_ATTEMPTS
        self.conflict_retries = settings.STORE_CONFLICT_RETRIES
        self.claim_timeout = timedelta(seconds=settings.CLAIM_TIMEOUT_SECONDS)
        self.backoff = backoff or BackoffPolicy.from_settings(settings)
        self.personalization = personalization or NoPersonalization()
        self.tracking = tracking
        self.notifier = notifier or LoggingFailureNotifier()
        self.clock = clock
        self._definitions: Dict[str, CampaignDefinition] = {}

    def _log_dispatch(self, run: CampaignRun, step_index: int, attempt: int, outcome: str, level: str = "info", **kwargs):
        """Structured logging for dispatch attempts"""
        log_data = {
            "run_id": run.run_id,
            "campaign_id": run.campaign_id,
            "target_id": run.target_id,
            "step_index": step_index,
            "attempt": attempt,
            "outcome": outcome,
            **kwargs
        }
        getattr(logger, level)(f"[DISPATCH] {log_data}")

    async def _definition(self, campaign_id: str) -> CampaignDefinition:
        definition = self._definitions.get(campaign_id)
        if definition is None:
            definition = await self.store.get_campaign(campaign_id)
            if definition is None:
                raise NotFoundError("Campaign", campaign_id)
            self._definitions[campaign_id] = definition
        return definition

    async def _claim(self, run: CampaignRun, now: datetime) -> Optional[CampaignRun]:
        current = await self.store.get_run(run.run_id)
        if current is None or current.status != RunStatus.RUNNING:
            logger.info(f"[DISPATCH] Run {run.run_id} is no longer running, skipping dispatch")
            return None
        if current.current_step_index != run.current_step_index:
            logger.info(f"[DISPATCH] Run {run.run_id} already moved past step {run.current_step_index}, skipping")
            return None
        if current.claimed_at is not None and now - current.claimed_at < self.claim_timeout:
            logger.warning(f"[DISPATCH] Run {run.run_id} is claimed by another worker since {current.claimed_at}")
            return None
        current.claimed_at = now
        try:
            return await self.store.update_run(current, current.version)
        except StoreConflictError:
            logger.warning(f"[DISPATCH] Lost claim race for run {run.run_id}")
            return None

    def _build_payload(self, run: CampaignRun, step: CampaignStep, attempt: int) -> Dict[str, Any]:
        payload = {
            "run_id": run.run_id,
            "campaign_id": run.campaign_id,
            "target_id": run.target_id,
            "step_index": run.current_step_index,
            "template_id": step.template_id,
            "attempt": attempt,
            "idempotency_key": f"{run.run_id}:{run.current_step_index}",
        }
        if self.tracking is not None and step.channel == Channel.EMAIL:
            payload["tracking"] = self.tracking.for_step(run.target_id, run.run_id, run.current_step_index)
        return self.personalization.personalize(run, step, payload)

    async def _invoke(self, run: CampaignRun, step: CampaignStep, attempt: int):
        """Returns (outcome, error message)."""
        try:
            client = self.channels.get(step.channel)
            await client.invoke(step.template_id, self._build_payload(run, step, attempt))
            return DispatchOutcome.SUCCESS, None
        except TransientChannelError as e:
            return DispatchOutcome.TRANSIENT_FAILURE, e.message
        except (PermanentChannelError, ConfigurationError) as e:
            return DispatchOutcome.PERMANENT_FAILURE, e.message
        except Exception as e:
            logger.error(f"[DISPATCH] Unexpected error dispatching run {run.run_id}: {e}", exc_info=True)
            return DispatchOutcome.TRANSIENT_FAILURE, f"{type(e).__name__}: {e}"

    async def dispatch(self, run: CampaignRun, step: CampaignStep, now: Optional[datetime] = None) -> Optional[DispatchOutcome]:
        """
        Dispatch the run's current step.

        Returns the outcome, or None when the run was not dispatched because it
        is no longer running or another worker holds it.
        """
        now = now or self.clock()
        definition = await self._definition(run.campaign_id)
        step_index = run.current_step_index

        claimed = await self._claim(run, now)
        if claimed is None:
            return None

        attempt = claimed.attempts + 1
        outcome, error = await self._invoke(claimed, step, attempt)
        if outcome == DispatchOutcome.TRANSIENT_FAILURE and attempt >= self.max_attempts:
            error = f"Gave up after {attempt} attempts: {error}"
            outcome = DispatchOutcome.PERMANENT_FAILURE

        for _ in range(self.conflict_retries + 1):
            current = await self.store.get_run(run.run_id)
            if current is None or current.status != RunStatus.RUNNING:
                self._log_dispatch(claimed, step_index, attempt, outcome.value, level="warning", discarded=True)
                await self._journal(claimed, step_index, attempt, step, outcome, error, discarded=True)
                return outcome

            self._apply(current, definition, outcome, attempt, error, now)
            try:
                saved = await self.store.update_run(current, current.version)
                break
            except StoreConflictError:
                logger.warning(f"[DISPATCH] Conflict recording outcome for run {run.run_id}, re-reading")
        else:
            raise StoreConflictError("CampaignRun", run.run_id)

        level = "info" if outcome == DispatchOutcome.SUCCESS else "warning"
        self._log_dispatch(
            saved, step_index, attempt, outcome.value, level=level,
            status=saved.status.value, error=error, next_attempt_at=saved.next_attempt_at,
        )
        await self._journal(saved, step_index, attempt, step, outcome, error)

        if saved.status == RunStatus.FAILED:
            await self.notifier.run_failed(saved, error or "permanent failure")
        return outcome

    def _apply(
        self,
        run: CampaignRun,
        definition: CampaignDefinition,
        outcome: DispatchOutcome,
        attempt: int,
        error: Optional[str],
        now: datetime,
    ) -> None:
        run.claimed_at = None
        if outcome == DispatchOutcome.SUCCESS:
            run.advance(definition.step_count)
            run.last_error = None
        elif outcome == DispatchOutcome.TRANSIENT_FAILURE:
            run.attempts = attempt
            run.next_attempt_at = now + self.backoff.delay(attempt)
            run.last_error = error
        else:
            run.attempts = attempt
            run.status = RunStatus.FAILED
            run.next_attempt_at = None
            run.last_error = error

    async def _journal(
        self,
        run: CampaignRun,
        step_index: int,
        attempt: int,
        step: CampaignStep,
        outcome: DispatchOutcome,
        error: Optional[str],
        discarded: bool = False,
    ) -> None:
        await self.store.append_attempt(
            DispatchAttempt(
                run_id=run.run_id,
                campaign_id=run.campaign_id,
                step_index=step_index,
                attempt=attempt,
                channel=step.channel.value,
                outcome=outcome,
                error=error,
                discarded=discarded,
            )
        )
