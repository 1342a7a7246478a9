from datetime import datetime, timezone
from typing import List, Optional

import pymongo
from beanie import Document, Indexed
from pydantic import Field
from pymongo import IndexModel

from channelflow.models.campaign import CampaignStep, RunStatus
from channelflow.models.funnel import Stage, StageVisit
from channelflow.models.journal import DispatchOutcome


class CampaignDocument(Document):
    campaign_id: Indexed(str, unique=True)
    name: str
    steps: List[CampaignStep]
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "campaigns"


class CampaignRunDocument(Document):
    run_id: Indexed(str, unique=True)
    campaign_id: Indexed(str)
    target_id: Indexed(str)
    started_at: datetime
    current_step_index: int = 0
    status: RunStatus = RunStatus.PENDING
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    completed_at: Optional[datetime] = None
    version: int = 0
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "campaign_runs"
        indexes = [
            IndexModel([("status", pymongo.ASCENDING), ("next_attempt_at", pymongo.ASCENDING)]),
        ]


class FunnelDocument(Document):
    funnel_id: Indexed(str, unique=True)
    name: str
    stages: List[Stage]

    class Settings:
        name = "funnels"


class LeadFunnelStateDocument(Document):
    """
    Current funnel stage of a lead. Never deleted, retained for analytics.
    """
    lead_id: str
    funnel_id: str
    current_stage_name: str
    entered_at: datetime
    history: List[StageVisit] = Field(default_factory=list)
    last_error: Optional[str] = None
    version: int = 0

    class Settings:
        name = "lead_funnel_states"
        indexes = [
            IndexModel([("lead_id", pymongo.ASCENDING), ("funnel_id", pymongo.ASCENDING)], unique=True),
        ]


class ProcessedEventDocument(Document):
    dedupe_key: Indexed(str, unique=True)
    lead_id: str
    trigger_id: str
    occurred_at: datetime
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "processed_events"


class DispatchAttemptDocument(Document):
    run_id: Indexed(str)
    campaign_id: str
    step_index: int
    attempt: int
    channel: str
    outcome: DispatchOutcome
    error: Optional[str] = None
    discarded: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "dispatch_journal"


DOCUMENT_MODELS = [
    CampaignDocument,
    CampaignRunDocument,
    FunnelDocument,
    LeadFunnelStateDocument,
    ProcessedEventDocument,
    DispatchAttemptDocument,
]
