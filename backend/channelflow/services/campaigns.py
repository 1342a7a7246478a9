import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from channelflow.config import Settings
from channelflow.exceptions import InvalidDefinitionError, NotFoundError, StoreConflictError
from channelflow.models.campaign import CampaignDefinition, CampaignRun, CampaignStep, RunStatus
from channelflow.models.journal import DispatchOutcome
from channelflow.services.contacts import parse_contact_file
from channelflow.services.executor import Executor
from channelflow.services.scheduler import Scheduler
from channelflow.store.base import SequenceStore

logger = logging.getLogger(__name__)


class CampaignOrchestrator:
    """
    Drives campaign runs: starts them, feeds due steps from the scheduler to the
    executor and puts runs back in the queue after each dispatch.

    Different runs are dispatched concurrently, bounded by MAX_CONCURRENCY to
    respect channel rate limits. Steps of one run are strictly sequential.
    """

    def __init__(
        self,
        store: SequenceStore,
        executor: Executor,
        settings: Settings,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.executor = executor
        self.scheduler = scheduler or Scheduler()
        self.conflict_retries = settings.STORE_CONFLICT_RETRIES
        self.tick_interval = settings.TICK_INTERVAL_SECONDS
        self.clock = clock
        self._semaphore = asyncio.Semaphore(max(1, settings.MAX_CONCURRENCY))
        self._needs_recovery = False

    async def register_campaign(self, definition: CampaignDefinition) -> CampaignDefinition:
        saved = await self.store.save_campaign(definition)
        logger.info(f"[CAMPAIGN] Registered campaign {definition.campaign_id} '{definition.name}'")
        return saved

    async def _get_definition(self, campaign_id: str) -> CampaignDefinition:
        definition = await self.store.get_campaign(campaign_id)
        if definition is None:
            raise NotFoundError("Campaign", campaign_id)
        return definition

    async def start_run(self, campaign_id: str, target_id: str, started_at: Optional[datetime] = None) -> CampaignRun:
        definition = await self._get_definition(campaign_id)
        if not target_id or not target_id.strip():
            raise InvalidDefinitionError("Target id is required to start a run")
        run = CampaignRun(
            campaign_id=campaign_id,
            target_id=target_id.strip(),
            started_at=started_at or self.clock(),
            status=RunStatus.RUNNING,
        )
        run = await self.store.create_run(run)
        due = self.scheduler.enqueue(run, definition)
        logger.info(f"[CAMPAIGN] Run {run.run_id} started for target {run.target_id}, first step due {due}")
        return run

    async def enroll_contacts(
        self, campaign_id: str, csv_content: str, started_at: Optional[datetime] = None
    ) -> List[CampaignRun]:
        """Start one run per contact of a CSV export."""
        await self._get_definition(campaign_id)
        contacts = parse_contact_file(csv_content)
        logger.info(f"[CAMPAIGN] Enrolling {len(contacts)} contacts in campaign {campaign_id}")
        started_at = started_at or self.clock()
        return [await self.start_run(campaign_id, contact["id"], started_at) for contact in contacts]

    async def get_run(self, run_id: str) -> CampaignRun:
        run = await self.store.get_run(run_id)
        if run is None:
            raise NotFoundError("CampaignRun", run_id)
        return run

    async def cancel_run(self, run_id: str, reason: Optional[str] = None) -> CampaignRun:
        """
        Cancel a run before its next dispatch. A dispatch already in flight is
        allowed to finish; its outcome is discarded by the executor.
        """
        for _ in range(self.conflict_retries + 1):
            run = await self.get_run(run_id)
            if run.is_terminal:
                return run
            run.status = RunStatus.CANCELLED
            run.next_attempt_at = None
            if reason:
                run.last_error = reason
            try:
                run = await self.store.update_run(run, run.version)
                break
            except StoreConflictError:
                logger.warning(f"[CAMPAIGN] Conflict cancelling run {run_id}, re-reading")
        else:
            raise StoreConflictError("CampaignRun", run_id)

        self.scheduler.cancel(run_id)
        logger.info(f"[CAMPAIGN] Run {run_id} cancelled" + (f": {reason}" if reason else ""))
        return run

    async def remove_target(self, target_id: str) -> List[CampaignRun]:
        """Cancel every active run of a target that was removed upstream."""
        cancelled = []
        for run in await self.store.list_runs(target_id=target_id):
            if not run.is_terminal:
                cancelled.append(await self.cancel_run(run.run_id, reason=f"Target {target_id} removed"))
        logger.info(f"[CAMPAIGN] Target {target_id} removed, {len(cancelled)} run(s) cancelled")
        return cancelled

    async def recover(self) -> int:
        """Rebuild the queue from the running runs in the store. Returns the number queued."""
        queued = 0
        for run in await self.store.list_runs(status=RunStatus.RUNNING):
            definition = await self.store.get_campaign(run.campaign_id)
            if definition is None:
                logger.error(f"[CAMPAIGN] Run {run.run_id} references unknown campaign {run.campaign_id}")
                continue
            if self.scheduler.enqueue(run, definition) is not None:
                queued += 1
            elif run.status == RunStatus.COMPLETED:
                try:
                    await self.store.update_run(run, run.version)
                except StoreConflictError:
                    logger.warning(f"[CAMPAIGN] Run {run.run_id} changed while recovering, left for next pass")
        logger.info(f"[CAMPAIGN] Recovered {queued} running run(s)")
        return queued

    async def tick(self, now: Optional[datetime] = None) -> List[Optional[DispatchOutcome]]:
        """Dispatch every step due at `now`."""
        now = now or self.clock()
        due = self.scheduler.dequeue_due(now)
        if not due:
            return []

        results = await asyncio.gather(
            *(self._dispatch(run, step, now) for run, step in due),
            return_exceptions=True,
        )
        outcomes = []
        for (run, _), result in zip(due, results):
            if isinstance(result, Exception):
                logger.error(f"[CONCURRENT_ERROR] Run {run.run_id} dispatch failed: {result}", exc_info=result)
                outcomes.append(None)
            else:
                outcomes.append(result)
        return outcomes

    async def _dispatch(self, run: CampaignRun, step: CampaignStep, now: datetime) -> Optional[DispatchOutcome]:
        async with self._semaphore:
            try:
                return await self.executor.dispatch(run, step, now)
            finally:
                self.scheduler.release(run.run_id)
                await self._requeue(run.run_id)

    async def _requeue(self, run_id: str) -> None:
        """Queue the run's next step from its stored state, whatever the dispatch did."""
        try:
            fresh = await self.store.get_run(run_id)
            if fresh is not None and fresh.status == RunStatus.RUNNING:
                self.scheduler.enqueue(fresh, await self._get_definition(fresh.campaign_id))
        except Exception as e:
            logger.error(f"[CAMPAIGN] Could not requeue run {run_id}, recovering on next pass: {e}")
            self._needs_recovery = True

    async def run_forever(self, stop: Optional[asyncio.Event] = None, poll_interval: Optional[float] = None) -> None:
        """Worker loop: recover, then tick until `stop` is set."""
        stop = stop or asyncio.Event()
        poll_interval = poll_interval or self.tick_interval
        await self.recover()
        logger.info("[CAMPAIGN] Worker loop started")
        while not stop.is_set():
            if self._needs_recovery:
                self._needs_recovery = False
                await self.recover()
            await self.tick()
            wait = poll_interval
            next_due = self.scheduler.next_due_at()
            if next_due is not None:
                wait = max(0.0, min(wait, (next_due - self.clock()).total_seconds()))
            try:
                await asyncio.wait_for(stop.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass
        logger.info("[CAMPAIGN] Worker loop stopped")
