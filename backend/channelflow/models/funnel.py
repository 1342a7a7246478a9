import uuid
from datetime import datetime, timezone
from typing import FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Stage(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., examples=["trial"])
    triggers: FrozenSet[str] = Field(default_factory=frozenset, examples=[["trial-started"]])
    actions: Tuple[str, ...] = Field(default_factory=tuple, examples=[["send-onboarding"]])


class FunnelDefinition(BaseModel):
    funnel_id: str = Field(default_factory=lambda: f"funnel_{uuid.uuid4().hex[:12]}")
    name: str = Field(..., examples=["SaaS trial funnel"])
    stages: List[Stage] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_unique_stage_names(self):
        names = [stage.name for stage in self.stages]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate stage names in funnel {self.funnel_id}: {duplicates}")
        return self

    def stage_index(self, name: str) -> int:
        for index, stage in enumerate(self.stages):
            if stage.name == name:
                return index
        raise KeyError(name)

    def get_stage(self, name: str) -> Stage:
        return self.stages[self.stage_index(name)]

    def first_match(self, trigger_id: str) -> Optional[Tuple[int, Stage]]:
        # definition order decides when stages share a trigger
        for index, stage in enumerate(self.stages):
            if trigger_id in stage.triggers:
                return index, stage
        return None


class StageVisit(BaseModel):
    stage_name: str
    entered_at: datetime
    trigger_id: Optional[str] = None


class LeadFunnelState(BaseModel):
    lead_id: str
    funnel_id: str
    current_stage_name: str
    entered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    history: List[StageVisit] = Field(default_factory=list)
    last_error: Optional[str] = None
    version: int = 0


class StageTransition(BaseModel):
    model_config = ConfigDict(frozen=True)

    lead_id: str
    funnel_id: str
    from_stage: Optional[str] = None
    to_stage: str
    trigger_id: str
    occurred_at: datetime

    @property
    def is_entry(self) -> bool:
        return self.from_stage is None
