import logging
from abc import ABC, abstractmethod

from channelflow.channels.registry import ChannelRegistry
from channelflow.models.campaign import CampaignRun

logger = logging.getLogger(__name__)


class FailureNotifier(ABC):
    """Surfaces failed runs for manual or external handling."""

    @abstractmethod
    async def run_failed(self, run: CampaignRun, reason: str) -> None:
        pass


class LoggingFailureNotifier(FailureNotifier):
    async def run_failed(self, run: CampaignRun, reason: str) -> None:
        logger.error(
            f"[NOTIFY] Run {run.run_id} failed at step {run.current_step_index} "
            f"(campaign {run.campaign_id}, target {run.target_id}): {reason}"
        )


class ChannelFailureNotifier(FailureNotifier):
    """Forwards failures to an action on one of the channels, e.g. an ops inbox."""

    def __init__(self, channels: ChannelRegistry, channel: str, action_id: str = "run-failed"):
        self.channels = channels
        self.channel = channel
        self.action_id = action_id

    async def run_failed(self, run: CampaignRun, reason: str) -> None:
        payload = {
            "run_id": run.run_id,
            "campaign_id": run.campaign_id,
            "target_id": run.target_id,
            "step_index": run.current_step_index,
            "reason": reason,
        }
        try:
            await self.channels.get(self.channel).invoke(self.action_id, payload)
        except Exception as e:
            # the run is already marked failed; keep the failure visible in the logs
            logger.error(f"[NOTIFY] Failed to notify {self.channel} about run {run.run_id}: {e}", exc_info=True)
