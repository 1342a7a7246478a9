import heapq
import itertools
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

from channelflow.models.campaign import CampaignDefinition, CampaignRun, CampaignStep, RunStatus
from channelflow.services.strategies import ImmediateSendTime, SendTimeStrategy

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Time-ordered queue of campaign steps.

    Each run has at most one queued entry and is either queued, in flight or
    absent. Stale heap entries (superseded or cancelled) are skipped on pop.
    A run handed out by dequeue_due stays in flight until release().
    """

    def __init__(self, send_time: Optional[SendTimeStrategy] = None):
        self.send_time = send_time or ImmediateSendTime()
        self._heap: List[Tuple[datetime, int, str]] = []
        self._queued: Dict[str, Tuple[int, CampaignRun]] = {}
        self._definitions: Dict[str, CampaignDefinition] = {}
        self._in_flight: Set[str] = set()
        self._counter = itertools.count()

    def due_at(self, run: CampaignRun, definition: CampaignDefinition) -> datetime:
        """Absolute due time of the run's current step (or of its pending retry)."""
        if run.next_attempt_at is not None:
            return run.next_attempt_at
        step = definition.steps[run.current_step_index]
        nominal = run.started_at + definition.offset_for(run.current_step_index)
        return self.send_time.adjust(run, step, nominal)

    def enqueue(self, run: CampaignRun, definition: CampaignDefinition) -> Optional[datetime]:
        """
        Queue the run's current step. Returns the due time, or None when nothing
        was queued. A run without remaining steps is marked completed.
        """
        if run.current_step_index >= definition.step_count:
            if run.status == RunStatus.RUNNING:
                run.status = RunStatus.COMPLETED
                run.completed_at = run.completed_at or datetime.now(timezone.utc)
                logger.info(f"[SCHEDULER] Run {run.run_id} has no remaining steps, marked completed")
            self._queued.pop(run.run_id, None)
            return None
        if run.status != RunStatus.RUNNING:
            logger.debug(f"[SCHEDULER] Run {run.run_id} is {run.status.value}, not queued")
            self._queued.pop(run.run_id, None)
            return None

        self._definitions[definition.campaign_id] = definition
        due = self.due_at(run, definition)
        token = next(self._counter)
        self._queued[run.run_id] = (token, run)
        heapq.heappush(self._heap, (due, token, run.run_id))
        logger.debug(f"[SCHEDULER] Run {run.run_id} step {run.current_step_index} due at {due.isoformat()}")
        return due

    def dequeue_due(self, now: datetime) -> List[Tuple[CampaignRun, CampaignStep]]:
        """Pop every step due at or before now. Returned runs are marked in flight."""
        due: List[Tuple[CampaignRun, CampaignStep]] = []
        deferred = []
        while self._heap and self._heap[0][0] <= now:
            item = heapq.heappop(self._heap)
            _, token, run_id = item
            entry = self._queued.get(run_id)
            if entry is None or entry[0] != token:
                continue
            if run_id in self._in_flight:
                # stays queued until the current dispatch is released
                deferred.append(item)
                continue
            del self._queued[run_id]
            run = entry[1]
            if run.status != RunStatus.RUNNING:
                continue
            definition = self._definitions[run.campaign_id]
            self._in_flight.add(run_id)
            due.append((run, definition.steps[run.current_step_index]))
        for item in deferred:
            heapq.heappush(self._heap, item)
        if due:
            logger.info(f"[SCHEDULER] {len(due)} step(s) due at {now.isoformat()}")
        return due

    def reschedule(self, run: CampaignRun, delay: timedelta, now: Optional[datetime] = None) -> Optional[datetime]:
        """Queue the run again after a delay, used for retry backoff."""
        now = now or datetime.now(timezone.utc)
        definition = self._definitions.get(run.campaign_id)
        if definition is None:
            raise KeyError(f"Campaign {run.campaign_id} was never enqueued")
        run.next_attempt_at = now + delay
        self.release(run.run_id)
        return self.enqueue(run, definition)

    def release(self, run_id: str) -> None:
        self._in_flight.discard(run_id)

    def cancel(self, run_id: str) -> bool:
        """Drop the run's queued step. An in-flight dispatch is left to finish."""
        removed = self._queued.pop(run_id, None) is not None
        if removed:
            logger.info(f"[SCHEDULER] Run {run_id} removed from queue")
        return removed

    def is_in_flight(self, run_id: str) -> bool:
        return run_id in self._in_flight

    def is_queued(self, run_id: str) -> bool:
        return run_id in self._queued

    def next_due_at(self) -> Optional[datetime]:
        while self._heap:
            _, token, run_id = self._heap[0]
            entry = self._queued.get(run_id)
            if entry is not None and entry[0] == token:
                return self._heap[0][0]
            heapq.heappop(self._heap)
        return None

    def __len__(self) -> int:
        return len(self._queued)
