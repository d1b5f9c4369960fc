"""Wire-level DTOs shared by the relay and the client.

Every frame on the signaling WebSocket is a JSON object shaped like
:class:`Envelope`. Acknowledged requests (``create-room``, ``join-room``)
carry a ``request_id`` that the relay echoes back in an ``ack`` frame whose
``data`` is a :class:`RoomResult`.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageType(str, Enum):
    """Frame names used on the signaling channel."""

    CREATE_ROOM = "create-room"
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    SIGNAL = "signal"
    ACK = "ack"
    MEMBER_ID = "member-id"
    PEER_JOINED = "peer-joined"
    PEER_LEFT = "peer-left"
    ERROR = "error"


class SignalKind(str, Enum):
    """Negotiation message kinds relayed between the two members."""

    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"


class RoomFailure(str, Enum):
    """Reasons a room operation can be refused."""

    ROOM_ALREADY_EXISTS = "ROOM_ALREADY_EXISTS"
    ROOM_NOT_FOUND = "ROOM_NOT_FOUND"
    ROOM_FULL = "ROOM_FULL"


class Envelope(BaseModel):
    """A single signaling frame."""

    type: str
    data: Any = None
    request_id: Optional[int] = None


class RoomResult(BaseModel):
    """Outcome of ``create-room`` / ``join-room``."""

    ok: bool
    reason: Optional[RoomFailure] = None

    @classmethod
    def success(cls) -> "RoomResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: RoomFailure) -> "RoomResult":
        return cls(ok=False, reason=reason)

    def to_wire(self) -> dict:
        if self.ok:
            return {"ok": True}
        return {"ok": False, "reason": self.reason.value}


class SignalRequest(BaseModel):
    """Payload of a client ``signal`` frame."""

    room_id: str = Field(min_length=1)
    kind: SignalKind
    payload: Any = None


class RelayedSignal(BaseModel):
    """Payload of a ``signal`` frame delivered to the other member.

    ``from`` is attached by the relay, never by the sender.
    """

    model_config = ConfigDict(populate_by_name=True)

    origin: str = Field(alias="from")
    kind: SignalKind
    payload: Any = None

    def to_wire(self) -> dict:
        return {"from": self.origin, "kind": self.kind.value, "payload": self.payload}


class PeerEvent(BaseModel):
    """Payload of ``peer-joined`` / ``peer-left`` / ``member-id``."""

    member_id: str
