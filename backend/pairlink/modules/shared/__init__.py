"""Shared DTOs for the relay and the client."""

from .dto import (
    Envelope,
    MessageType,
    PeerEvent,
    RelayedSignal,
    RoomFailure,
    RoomResult,
    SignalKind,
    SignalRequest,
)

__all__ = [
    "Envelope",
    "MessageType",
    "PeerEvent",
    "RelayedSignal",
    "RoomFailure",
    "RoomResult",
    "SignalKind",
    "SignalRequest",
]
