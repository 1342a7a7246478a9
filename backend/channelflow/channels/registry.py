import logging
from typing import Dict, Iterable, List, Optional

import httpx

from channelflow.channels.base import ChannelClient
from channelflow.channels.http import ApiChannelClient
from channelflow.config import Settings
from channelflow.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Maps channel names to their clients. Lookups of unknown channels fail fast."""

    def __init__(self, clients: Iterable[ChannelClient] = ()):
        self._clients: Dict[str, ChannelClient] = {}
        self._shared_client: Optional[httpx.AsyncClient] = None
        for client in clients:
            self.register(client)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChannelRegistry":
        settings.validate_channels()
        shared = httpx.AsyncClient(timeout=settings.API_SB_TIMEOUT_SECONDS)
        registry = cls(
            ApiChannelClient(name, settings.API_SB_URL, settings.API_SB_KEY, client=shared)
            for name in settings.ENABLED_CHANNELS
        )
        registry._shared_client = shared
        logger.info(f"[CHANNELS] Enabled channels: {registry.names}")
        return registry

    @property
    def names(self) -> List[str]:
        return sorted(self._clients)

    def register(self, client: ChannelClient) -> None:
        self._clients[client.channel_name] = client

    def get(self, channel: str) -> ChannelClient:
        client = self._clients.get(str(getattr(channel, "value", channel)))
        if client is None:
            raise ConfigurationError(f"Channel '{channel}' is not enabled")
        return client

    def __contains__(self, channel) -> bool:
        return str(getattr(channel, "value", channel)) in self._clients

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        if self._shared_client is not None:
            await self._shared_client.aclose()
