from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class Event(BaseModel):
    lead_id: str = Field(..., examples=["lead_42"])
    trigger_id: str = Field(..., examples=["pricing-page-visit"])
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    funnel_id: Optional[str] = None
    payload: dict = Field(default_factory=dict)

    @field_validator("occurred_at")
    @classmethod
    def normalize_to_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def dedupe_key(self) -> str:
        return f"{self.lead_id}|{self.trigger_id}|{self.occurred_at.isoformat()}"
