from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from channelflow.exceptions import StoreConflictError
from channelflow.models.campaign import CampaignDefinition, CampaignRun, RunStatus
from channelflow.models.event import Event
from channelflow.models.funnel import FunnelDefinition, LeadFunnelState
from channelflow.models.journal import DispatchAttempt
from channelflow.store.base import SequenceStore


class InMemorySequenceStore(SequenceStore):
    """
    In-memory store for testing and development.

    Not persistent - data lost on restart. Objects are copied on the way in and
    out so callers never share state with the store.
    """

    def __init__(self):
        self._campaigns: Dict[str, CampaignDefinition] = {}
        self._runs: Dict[str, CampaignRun] = {}
        self._funnels: Dict[str, FunnelDefinition] = {}
        self._lead_states: Dict[Tuple[str, str], LeadFunnelState] = {}
        self._event_keys: Set[str] = set()
        self._attempts: List[DispatchAttempt] = []

    async def save_campaign(self, definition: CampaignDefinition) -> CampaignDefinition:
        self._campaigns[definition.campaign_id] = definition.model_copy(deep=True)
        return definition

    async def get_campaign(self, campaign_id: str) -> Optional[CampaignDefinition]:
        definition = self._campaigns.get(campaign_id)
        return definition.model_copy(deep=True) if definition else None

    async def create_run(self, run: CampaignRun) -> CampaignRun:
        if run.run_id in self._runs:
            raise StoreConflictError("CampaignRun", run.run_id)
        self._runs[run.run_id] = run.model_copy(deep=True)
        return run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> Optional[CampaignRun]:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def update_run(self, run: CampaignRun, expected_version: int) -> CampaignRun:
        stored = self._runs.get(run.run_id)
        if stored is None or stored.version != expected_version:
            raise StoreConflictError("CampaignRun", run.run_id, expected_version)
        updated = run.model_copy(
            deep=True,
            update={"version": expected_version + 1, "updated_at": datetime.now(timezone.utc)},
        )
        self._runs[run.run_id] = updated
        return updated.model_copy(deep=True)

    async def list_runs(
        self,
        status: Optional[RunStatus] = None,
        target_id: Optional[str] = None,
        campaign_id: Optional[str] = None,
    ) -> List[CampaignRun]:
        runs = list(self._runs.values())
        if status is not None:
            runs = [r for r in runs if r.status == status]
        if target_id is not None:
            runs = [r for r in runs if r.target_id == target_id]
        if campaign_id is not None:
            runs = [r for r in runs if r.campaign_id == campaign_id]
        return [r.model_copy(deep=True) for r in sorted(runs, key=lambda r: r.started_at)]

    async def save_funnel(self, funnel: FunnelDefinition) -> FunnelDefinition:
        self._funnels[funnel.funnel_id] = funnel.model_copy(deep=True)
        return funnel

    async def get_funnel(self, funnel_id: str) -> Optional[FunnelDefinition]:
        funnel = self._funnels.get(funnel_id)
        return funnel.model_copy(deep=True) if funnel else None

    async def list_funnels(self) -> List[FunnelDefinition]:
        return [f.model_copy(deep=True) for f in self._funnels.values()]

    async def get_lead_state(self, lead_id: str, funnel_id: str) -> Optional[LeadFunnelState]:
        state = self._lead_states.get((lead_id, funnel_id))
        return state.model_copy(deep=True) if state else None

    async def put_lead_state(self, state: LeadFunnelState, expected_version: Optional[int]) -> LeadFunnelState:
        key = (state.lead_id, state.funnel_id)
        stored = self._lead_states.get(key)
        if expected_version is None:
            if stored is not None:
                raise StoreConflictError("LeadFunnelState", f"{state.lead_id}/{state.funnel_id}")
            new_version = 0
        else:
            if stored is None or stored.version != expected_version:
                raise StoreConflictError("LeadFunnelState", f"{state.lead_id}/{state.funnel_id}", expected_version)
            new_version = expected_version + 1
        updated = state.model_copy(deep=True, update={"version": new_version})
        self._lead_states[key] = updated
        return updated.model_copy(deep=True)

    async def list_lead_states(self, funnel_id: str) -> List[LeadFunnelState]:
        return [s.model_copy(deep=True) for (_, fid), s in self._lead_states.items() if fid == funnel_id]

    async def record_event(self, event: Event) -> bool:
        if event.dedupe_key in self._event_keys:
            return False
        self._event_keys.add(event.dedupe_key)
        return True

    async def forget_event(self, event: Event) -> None:
        self._event_keys.discard(event.dedupe_key)

    async def append_attempt(self, attempt: DispatchAttempt) -> None:
        self._attempts.append(attempt.model_copy(deep=True))

    async def list_attempts(self, run_id: str) -> List[DispatchAttempt]:
        return [a.model_copy(deep=True) for a in self._attempts if a.run_id == run_id]
