import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Channel(str, Enum):
    EMAIL = "email"
    SOCIAL = "social"
    VIDEO = "video"
    CONTENT = "content"
    SEO = "seo"
    INBOUND = "inbound"
    ANALYTICS = "analytics"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATUSES = (RunStatus.COMPLETED, RunStatus.CANCELLED, RunStatus.FAILED)


class CampaignStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    delay_days: int = Field(..., ge=0, examples=[3])
    template_id: str = Field(..., examples=["welcome-email"])
    channel: Channel = Channel.EMAIL


class CampaignDefinition(BaseModel):
    campaign_id: str = Field(default_factory=lambda: f"campaign_{uuid.uuid4().hex[:12]}")
    name: str = Field(..., examples=["Trial onboarding"])
    steps: List[CampaignStep] = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def step_count(self) -> int:
        return len(self.steps)

    def offset_for(self, step_index: int) -> timedelta:
        """Offset of a step from the run start: the sum of delays up to and including it."""
        return timedelta(days=sum(step.delay_days for step in self.steps[: step_index + 1]))


class CampaignRun(BaseModel):
    """
    One execution of a campaign against a single target (lead/contact).
    Mutated only by advancing current_step_index or changing status.
    """
    run_id: str = Field(default_factory=lambda: f"run_{uuid.uuid4().hex}")
    campaign_id: str
    target_id: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    current_step_index: int = 0
    status: RunStatus = RunStatus.PENDING
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    completed_at: Optional[datetime] = None
    version: int = 0
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("started_at", "next_attempt_at", "claimed_at", "completed_at")
    @classmethod
    def normalize_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Mongo hands back naive datetimes; all scheduling math is in UTC
        if value is None or value.tzinfo is not None:
            return value
        return value.replace(tzinfo=timezone.utc)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def advance(self, step_count: int) -> None:
        if self.current_step_index >= step_count:
            raise ValueError(f"Run {self.run_id} has no step left to advance past")
        self.current_step_index += 1
        self.attempts = 0
        self.next_attempt_at = None
        if self.current_step_index == step_count:
            self.status = RunStatus.COMPLETED
            self.completed_at = datetime.now(timezone.utc)
