"""
Shared fixtures for channelflow tests.

Everything runs against the in-memory store and recording fake channels, so
no MongoDB, broker or actions API is needed.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from channelflow.bootstrap import build_services
from channelflow.channels.base import ChannelClient
from channelflow.channels.registry import ChannelRegistry
from channelflow.config import KNOWN_CHANNELS, Settings
from channelflow.services.backoff import BackoffPolicy
from channelflow.store.memory import InMemorySequenceStore

START = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


class FakeChannel(ChannelClient):
    """Records every invocation; raises queued errors before succeeding."""

    def __init__(self, name: str, errors: Optional[List[Exception]] = None):
        self._name = name
        self.errors = list(errors or [])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    @property
    def channel_name(self) -> str:
        return self._name

    def fail_with(self, *errors: Exception) -> None:
        self.errors.extend(errors)

    async def invoke(self, action_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append({"action_id": action_id, "payload": payload})
        if self.errors:
            raise self.errors.pop(0)
        return {"ok": True}

    async def aclose(self) -> None:
        self.closed = True

    @property
    def action_ids(self) -> List[str]:
        return [call["action_id"] for call in self.calls]


def make_settings(**overrides) -> Settings:
    values = {
        "API_SB_KEY": "test-key",
        "RETRY_JITTER": 0.0,
        "TRACKING_SECRET_KEY": "test-secret",
        "API_PUBLIC_URL": "http://testserver",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def start():
    return START


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def channel_factory():
    return FakeChannel


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store():
    return InMemorySequenceStore()


@pytest.fixture
def fake_channels():
    return {name: FakeChannel(name) for name in KNOWN_CHANNELS}


@pytest.fixture
def channels(fake_channels):
    return ChannelRegistry(fake_channels.values())


@pytest.fixture
def backoff(settings):
    return BackoffPolicy.from_settings(settings)


@pytest.fixture
def services(settings, store, channels, backoff):
    return build_services(settings, store, channels, backoff=backoff, clock=lambda: START)
