"""pairlink modules.

Modules:
    relay: room registry and signaling fan-out (server side)
    client: signaling channel, room join, peer session, call orchestration
    shared: wire DTOs and ICE settings used by both sides

NOTE: ``client`` pulls in aiortc/av and is imported explicitly, so the relay
process never loads the media stack.
"""

from .shared import Envelope, MessageType, RoomFailure, RoomResult, SignalKind
from .relay import RoomRegistry, SignalRelay

__all__ = [
    # Shared DTOs
    "Envelope",
    "MessageType",
    "RoomFailure",
    "RoomResult",
    "SignalKind",
    # Relay
    "RoomRegistry",
    "SignalRelay",
]
