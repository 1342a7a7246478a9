from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from channelflow.channels.registry import ChannelRegistry
from channelflow.config import Settings
from channelflow.services.backoff import BackoffPolicy
from channelflow.services.campaigns import CampaignOrchestrator
from channelflow.services.executor import Executor
from channelflow.services.funnel_state_machine import FunnelStateMachine
from channelflow.services.funnels import FunnelOrchestrator
from channelflow.services.notifications import FailureNotifier
from channelflow.services.scheduler import Scheduler
from channelflow.services.strategies import PersonalizationStrategy, SendTimeStrategy
from channelflow.services.tracking import TrackingLinks
from channelflow.services.trigger_matcher import TriggerMatcher
from channelflow.store.base import SequenceStore


@dataclass
class Services:
    settings: Settings
    store: SequenceStore
    channels: ChannelRegistry
    tracking: TrackingLinks
    campaigns: CampaignOrchestrator
    funnels: FunnelOrchestrator


def build_services(
    settings: Settings,
    store: SequenceStore,
    channels: ChannelRegistry,
    backoff: Optional[BackoffPolicy] = None,
    send_time: Optional[SendTimeStrategy] = None,
    personalization: Optional[PersonalizationStrategy] = None,
    notifier: Optional[FailureNotifier] = None,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> Services:
    """Wire the components together. Settings are passed explicitly to each of them."""
    tracking = TrackingLinks(settings)
    executor = Executor(
        store,
        channels,
        settings,
        backoff=backoff,
        personalization=personalization,
        tracking=tracking,
        notifier=notifier,
        clock=clock,
    )
    campaigns = CampaignOrchestrator(store, executor, settings, scheduler=Scheduler(send_time), clock=clock)
    funnels = FunnelOrchestrator(
        store,
        TriggerMatcher(store),
        FunnelStateMachine(store, channels, settings),
        settings,
    )
    return Services(
        settings=settings,
        store=store,
        channels=channels,
        tracking=tracking,
        campaigns=campaigns,
        funnels=funnels,
    )
