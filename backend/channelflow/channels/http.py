"""
Actions API client.
Every channel action is a POST to {API_SB_URL}/actions/{channel}/{action_id}.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from channelflow.channels.base import ChannelClient
from channelflow.exceptions import PermanentChannelError, TransientChannelError

logger = logging.getLogger(__name__)

# Request Timeout, Too Early, Too Many Requests
RETRYABLE_CLIENT_STATUSES = {408, 425, 429}


class ApiChannelClient(ChannelClient):
    """
    Channel backed by the remote actions API.

    The httpx client may be shared between channels; it is only closed here
    when this instance created it.
    """

    def __init__(
        self,
        channel: str,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._channel = channel
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def channel_name(self) -> str:
        return self._channel

    async def invoke(self, action_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/actions/{self._channel}/{action_id}"
        try:
            response = await self._client.post(url, json=payload, headers=self.headers)
        except httpx.TimeoutException as e:
            logger.warning(f"[CHANNEL] {self._channel}/{action_id} timed out: {e}")
            raise TransientChannelError(self._channel, f"timeout calling {action_id}")
        except httpx.TransportError as e:
            logger.warning(f"[CHANNEL] {self._channel}/{action_id} transport error: {e}")
            raise TransientChannelError(self._channel, str(e))

        if response.status_code in RETRYABLE_CLIENT_STATUSES or response.status_code >= 500:
            logger.warning(f"[CHANNEL] {self._channel}/{action_id} returned {response.status_code}")
            raise TransientChannelError(self._channel, f"HTTP {response.status_code}")
        if response.status_code >= 400:
            logger.error(f"[CHANNEL] {self._channel}/{action_id} rejected: {response.status_code} {response.text}")
            raise PermanentChannelError(self._channel, f"HTTP {response.status_code}: {response.text}")

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
