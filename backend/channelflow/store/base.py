"""
Sequence store interface.
Durable home of campaign definitions, run cursors, funnels and lead state.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from channelflow.models.campaign import CampaignDefinition, CampaignRun, RunStatus
from channelflow.models.event import Event
from channelflow.models.funnel import FunnelDefinition, LeadFunnelState
from channelflow.models.journal import DispatchAttempt


class SequenceStore(ABC):
    """
    Base interface for sequence storage backends.

    Run and lead-state writes are conditional: the caller passes the version it
    read and the write fails with StoreConflictError if another writer got there
    first. A successful write returns the stored object with its new version.
    """

    # Campaign definitions

    @abstractmethod
    async def save_campaign(self, definition: CampaignDefinition) -> CampaignDefinition:
        pass

    @abstractmethod
    async def get_campaign(self, campaign_id: str) -> Optional[CampaignDefinition]:
        pass

    # Campaign runs

    @abstractmethod
    async def create_run(self, run: CampaignRun) -> CampaignRun:
        pass

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[CampaignRun]:
        pass

    @abstractmethod
    async def update_run(self, run: CampaignRun, expected_version: int) -> CampaignRun:
        """Replace the run if its stored version equals expected_version."""
        pass

    @abstractmethod
    async def list_runs(
        self,
        status: Optional[RunStatus] = None,
        target_id: Optional[str] = None,
        campaign_id: Optional[str] = None,
    ) -> List[CampaignRun]:
        pass

    # Funnels

    @abstractmethod
    async def save_funnel(self, funnel: FunnelDefinition) -> FunnelDefinition:
        pass

    @abstractmethod
    async def get_funnel(self, funnel_id: str) -> Optional[FunnelDefinition]:
        pass

    @abstractmethod
    async def list_funnels(self) -> List[FunnelDefinition]:
        pass

    # Lead funnel state

    @abstractmethod
    async def get_lead_state(self, lead_id: str, funnel_id: str) -> Optional[LeadFunnelState]:
        pass

    @abstractmethod
    async def put_lead_state(self, state: LeadFunnelState, expected_version: Optional[int]) -> LeadFunnelState:
        """Create the state when expected_version is None, otherwise replace it conditionally."""
        pass

    @abstractmethod
    async def list_lead_states(self, funnel_id: str) -> List[LeadFunnelState]:
        pass

    # Events and journal

    @abstractmethod
    async def record_event(self, event: Event) -> bool:
        """Remember an event. Returns False if the same event was already recorded."""
        pass

    @abstractmethod
    async def forget_event(self, event: Event) -> None:
        """Drop a recorded event so a redelivery is processed again."""
        pass

    @abstractmethod
    async def append_attempt(self, attempt: DispatchAttempt) -> None:
        pass

    @abstractmethod
    async def list_attempts(self, run_id: str) -> List[DispatchAttempt]:
        pass
