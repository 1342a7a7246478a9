from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DispatchOutcome(str, Enum):
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


class DispatchAttempt(BaseModel):
    """
    A single dispatch attempt of a campaign step.
    Kept for auditing failed and retried runs.
    """
    run_id: str
    campaign_id: str
    step_index: int
    attempt: int
    channel: str
    outcome: DispatchOutcome
    error: Optional[str] = None
    discarded: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
