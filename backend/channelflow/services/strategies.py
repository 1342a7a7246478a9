"""
Pluggable strategies for decisions normally left to external intelligence
(optimal posting time, personalization level). The defaults are deterministic.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict

from channelflow.models.campaign import CampaignRun, CampaignStep


class SendTimeStrategy(ABC):
    """Chooses the actual send time of a step from its nominal due time."""

    @abstractmethod
    def adjust(self, run: CampaignRun, step: CampaignStep, due_at: datetime) -> datetime:
        pass


class ImmediateSendTime(SendTimeStrategy):
    def adjust(self, run: CampaignRun, step: CampaignStep, due_at: datetime) -> datetime:
        return due_at


class PersonalizationStrategy(ABC):
    """Enriches the payload sent to a channel for one step."""

    @abstractmethod
    def personalize(self, run: CampaignRun, step: CampaignStep, payload: Dict[str, Any]) -> Dict[str, Any]:
        pass


class NoPersonalization(PersonalizationStrategy):
    def personalize(self, run: CampaignRun, step: CampaignStep, payload: Dict[str, Any]) -> Dict[str, Any]:
        return payload
