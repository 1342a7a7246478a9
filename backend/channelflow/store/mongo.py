import logging
from datetime import datetime, timezone
from typing import List, Optional

from beanie.operators import Set
from pymongo.errors import DuplicateKeyError

from channelflow.db.documents import (
    CampaignDocument,
    CampaignRunDocument,
    DispatchAttemptDocument,
    FunnelDocument,
    LeadFunnelStateDocument,
    ProcessedEventDocument,
)
from channelflow.exceptions import StoreConflictError
from channelflow.models.campaign import CampaignDefinition, CampaignRun, RunStatus
from channelflow.models.event import Event
from channelflow.models.funnel import FunnelDefinition, LeadFunnelState
from channelflow.models.journal import DispatchAttempt
from channelflow.store.base import SequenceStore

logger = logging.getLogger(__name__)

_DOCUMENT_ONLY_FIELDS = {"id", "revision_id"}


def _to_domain(model_cls, document):
    return model_cls.model_validate(document.model_dump(exclude=_DOCUMENT_ONLY_FIELDS))


class MongoSequenceStore(SequenceStore):
    """
    Sequence store backed by MongoDB through Beanie.
    Requires init_db() to have run in the current event loop.
    """

    async def save_campaign(self, definition: CampaignDefinition) -> CampaignDefinition:
        existing = await CampaignDocument.find_one(CampaignDocument.campaign_id == definition.campaign_id)
        if existing:
            existing.name = definition.name
            existing.steps = list(definition.steps)
            await existing.save()
        else:
            await CampaignDocument(**definition.model_dump()).insert()
        logger.info(f"[STORE] Campaign {definition.campaign_id} saved ({definition.step_count} steps)")
        return definition

    async def get_campaign(self, campaign_id: str) -> Optional[CampaignDefinition]:
        document = await CampaignDocument.find_one(CampaignDocument.campaign_id == campaign_id)
        return _to_domain(CampaignDefinition, document) if document else None

    async def create_run(self, run: CampaignRun) -> CampaignRun:
        try:
            await CampaignRunDocument(**run.model_dump()).insert()
        except DuplicateKeyError:
            raise StoreConflictError("CampaignRun", run.run_id)
        return run

    async def get_run(self, run_id: str) -> Optional[CampaignRun]:
        document = await CampaignRunDocument.find_one(CampaignRunDocument.run_id == run_id)
        return _to_domain(CampaignRun, document) if document else None

    async def update_run(self, run: CampaignRun, expected_version: int) -> CampaignRun:
        updated = run.model_copy(
            update={"version": expected_version + 1, "updated_at": datetime.now(timezone.utc)}
        )
        data = updated.model_dump(exclude={"run_id"})
        data["status"] = updated.status.value
        result = await CampaignRunDocument.find_one(
            CampaignRunDocument.run_id == run.run_id,
            CampaignRunDocument.version == expected_version,
        ).update(Set(data))
        if result is None or result.matched_count == 0:
            raise StoreConflictError("CampaignRun", run.run_id, expected_version)
        return updated

    async def list_runs(
        self,
        status: Optional[RunStatus] = None,
        target_id: Optional[str] = None,
        campaign_id: Optional[str] = None,
    ) -> List[CampaignRun]:
        conditions = []
        if status is not None:
            conditions.append(CampaignRunDocument.status == status.value)
        if target_id is not None:
            conditions.append(CampaignRunDocument.target_id == target_id)
        if campaign_id is not None:
            conditions.append(CampaignRunDocument.campaign_id == campaign_id)
        documents = await CampaignRunDocument.find(*conditions).sort("+started_at").to_list()
        return [_to_domain(CampaignRun, d) for d in documents]

    async def save_funnel(self, funnel: FunnelDefinition) -> FunnelDefinition:
        existing = await FunnelDocument.find_one(FunnelDocument.funnel_id == funnel.funnel_id)
        if existing:
            existing.name = funnel.name
            existing.stages = list(funnel.stages)
            await existing.save()
        else:
            await FunnelDocument(**funnel.model_dump()).insert()
        logger.info(f"[STORE] Funnel {funnel.funnel_id} saved ({len(funnel.stages)} stages)")
        return funnel

    async def get_funnel(self, funnel_id: str) -> Optional[FunnelDefinition]:
        document = await FunnelDocument.find_one(FunnelDocument.funnel_id == funnel_id)
        return _to_domain(FunnelDefinition, document) if document else None

    async def list_funnels(self) -> List[FunnelDefinition]:
        documents = await FunnelDocument.find_all().to_list()
        return [_to_domain(FunnelDefinition, d) for d in documents]

    async def get_lead_state(self, lead_id: str, funnel_id: str) -> Optional[LeadFunnelState]:
        document = await LeadFunnelStateDocument.find_one(
            LeadFunnelStateDocument.lead_id == lead_id,
            LeadFunnelStateDocument.funnel_id == funnel_id,
        )
        return _to_domain(LeadFunnelState, document) if document else None

    async def put_lead_state(self, state: LeadFunnelState, expected_version: Optional[int]) -> LeadFunnelState:
        key = f"{state.lead_id}/{state.funnel_id}"
        if expected_version is None:
            created = state.model_copy(update={"version": 0})
            try:
                await LeadFunnelStateDocument(**created.model_dump()).insert()
            except DuplicateKeyError:
                raise StoreConflictError("LeadFunnelState", key)
            return created

        updated = state.model_copy(update={"version": expected_version + 1})
        result = await LeadFunnelStateDocument.find_one(
            LeadFunnelStateDocument.lead_id == state.lead_id,
            LeadFunnelStateDocument.funnel_id == state.funnel_id,
            LeadFunnelStateDocument.version == expected_version,
        ).update(Set(updated.model_dump(exclude={"lead_id", "funnel_id"})))
        if result is None or result.matched_count == 0:
            raise StoreConflictError("LeadFunnelState", key, expected_version)
        return updated

    async def list_lead_states(self, funnel_id: str) -> List[LeadFunnelState]:
        documents = await LeadFunnelStateDocument.find(LeadFunnelStateDocument.funnel_id == funnel_id).to_list()
        return [_to_domain(LeadFunnelState, d) for d in documents]

    async def record_event(self, event: Event) -> bool:
        try:
            await ProcessedEventDocument(
                dedupe_key=event.dedupe_key,
                lead_id=event.lead_id,
                trigger_id=event.trigger_id,
                occurred_at=event.occurred_at,
            ).insert()
        except DuplicateKeyError:
            logger.info(f"[STORE] Duplicate event ignored: {event.dedupe_key}")
            return False
        return True

    async def forget_event(self, event: Event) -> None:
        await ProcessedEventDocument.find_one(ProcessedEventDocument.dedupe_key == event.dedupe_key).delete()

    async def append_attempt(self, attempt: DispatchAttempt) -> None:
        await DispatchAttemptDocument(**attempt.model_dump()).insert()

    async def list_attempts(self, run_id: str) -> List[DispatchAttempt]:
        documents = await DispatchAttemptDocument.find(
            DispatchAttemptDocument.run_id == run_id
        ).sort("+created_at").to_list()
        return [_to_domain(DispatchAttempt, d) for d in documents]
