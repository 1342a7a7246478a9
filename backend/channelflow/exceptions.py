"""
Exceptions raised by the orchestration core.
Channel errors drive retry decisions, store errors drive re-reads.
"""


class ChannelflowError(Exception):
    """Base exception for channelflow"""
    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class TransientChannelError(ChannelflowError):
    """Network failure, timeout or rate limit. Retried with backoff."""
    def __init__(self, channel: str = "channel", message: str = None):
        msg = f"{channel} call failed transiently"
        if message:
            msg = f"{msg}: {message}"
        self.channel = channel
        super().__init__(msg)


class PermanentChannelError(ChannelflowError):
    """Invalid payload or unauthorized. Never retried."""
    def __init__(self, channel: str = "channel", message: str = None):
        msg = f"{channel} call failed permanently"
        if message:
            msg = f"{msg}: {message}"
        self.channel = channel
        super().__init__(msg)


class StoreConflictError(ChannelflowError):
    """A versioned write lost a race with another writer"""
    def __init__(self, resource: str = "Resource", key: str = None, expected_version: int = None):
        message = f"{resource} was modified concurrently"
        if key:
            message = f"{resource} '{key}' was modified concurrently"
        if expected_version is not None:
            message = f"{message} (expected version {expected_version})"
        super().__init__(message)


class ConfigurationError(ChannelflowError):
    """Missing credentials or unknown channel, raised at startup"""


class NotFoundError(ChannelflowError):
    """Resource not found"""
    def __init__(self, resource: str = "Resource", resource_id: str = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        super().__init__(message)


class InvalidDefinitionError(ChannelflowError):
    """Campaign or funnel definition failed validation"""
