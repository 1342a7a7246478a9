"""
Base interface for channel collaborators.
Content, SEO, social, video, outbound email and inbound auto-response are all
opaque action endpoints behind this interface.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict


class ChannelClient(ABC):
    """Base interface for an external channel (email, social, video, ...)."""

    @property
    @abstractmethod
    def channel_name(self) -> str:
        pass

    @abstractmethod
    async def invoke(self, action_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Invoke an action on the channel.

        Callers treat the action as idempotent by convention and may retry it.

        Raises:
            TransientChannelError: network failure, timeout or rate limit
            PermanentChannelError: the action can never succeed as requested
        """
        pass

    async def aclose(self) -> None:
        pass
