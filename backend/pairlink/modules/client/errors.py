"""Client exception hierarchy.

Every failure the orchestrator can surface derives from ``PairlinkError`` and
carries a human-readable ``message`` plus a short machine ``code``.
"""
from typing import Optional


class PairlinkError(Exception):
    """Base exception for the client."""

    code = "ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# transport faults

class ChannelError(PairlinkError):
    """Signaling channel fault."""
    code = "CHANNEL_ERROR"


class ConnectionTimeoutError(ChannelError):
    """Connect attempt did not complete within the timeout window."""
    code = "CONNECTION_TIMEOUT"


class ChannelClosedError(ChannelError):
    """Operation needs a connected channel."""
    code = "CHANNEL_CLOSED"


class ReconnectExhaustedError(ChannelError):
    """Reconnection budget used up."""
    code = "RECONNECT_EXHAUSTED"


# protocol conflicts

class RoomJoinError(PairlinkError):
    """Create/join failed after the retry policy ran out."""
    code = "ROOM_JOIN_FAILED"

    def __init__(self, message: str, reason: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details)
        self.reason = reason


# negotiation faults

class NegotiationError(PairlinkError):
    """Offer/answer used against the wrong role or without a session."""
    code = "NEGOTIATION_ERROR"


# resource faults

class MediaError(PairlinkError):
    """Local media could not be acquired."""
    code = "MEDIA_ERROR"


class PermissionDeniedError(MediaError):
    code = "PERMISSION_DENIED"


class DeviceNotFoundError(MediaError):
    code = "DEVICE_NOT_FOUND"


class DeviceBusyError(MediaError):
    code = "DEVICE_BUSY"
