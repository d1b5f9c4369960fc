"""Signaling message relay.

Routes named signaling frames between the members of a room without looking
at their payloads. Media never passes through here.

Trust model:
    ``forward`` does not check that the sender is a member of the target room.
    For a two-party rendezvous relay without authentication this keeps the
    relay stateless per message; it is not a security boundary and must be
    revisited if participants are ever authenticated.

See Also:
    room_registry.py: membership table used for lookups
    routes/signaling.py: WebSocket endpoint feeding this relay
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import WebSocket

from ..shared.dto import MessageType, RelayedSignal, SignalKind
from .room_registry import RoomRegistry

logger = logging.getLogger(__name__)


class SignalRelay:
    """Connection table plus fan-out of signaling frames.

    Attributes:
        registry (RoomRegistry): membership table; its notifier is bound to
            :meth:`deliver` on construction
        connections (Dict[str, WebSocket]): member id -> live socket

    Examples:
        >>> relay = SignalRelay(RoomRegistry())
        >>> relay.register("member-a", ws_a)
        >>> relay.register("member-b", ws_b)
        >>> await relay.registry.create("r1", "member-a")
        >>> await relay.registry.join("r1", "member-b")
        >>> await relay.forward("r1", "member-a", SignalKind.OFFER, {"sdp": "...", "type": "offer"})
        1
    """

    def __init__(self, registry: RoomRegistry):
        self.registry = registry
        self.registry.notifier = self.deliver
        self.connections: Dict[str, WebSocket] = {}

    def register(self, member_id: str, websocket: WebSocket) -> None:
        self.connections[member_id] = websocket
        logger.info(f"[Relay] member {member_id[:8]} connected ({len(self.connections)} online)")

    def unregister(self, member_id: str) -> Optional[WebSocket]:
        websocket = self.connections.pop(member_id, None)
        if websocket is not None:
            logger.info(f"[Relay] member {member_id[:8]} unregistered ({len(self.connections)} online)")
        return websocket

    async def deliver(self, member_id: str, event: str, data: Any) -> bool:
        """Send one frame to one member.

        Args:
            member_id (str): recipient
            event (str): frame ``type``
            data (Any): frame ``data``

        Returns:
            bool: ``False`` if the member is unknown or the send failed.
            Failures are logged, never raised; the transport disconnect
            path cleans the member up.
        """
        websocket = self.connections.get(member_id)
        if websocket is None:
            logger.debug(f"[Relay] drop '{event}' for unknown member {member_id[:8]}")
            return False

        try:
            await websocket.send_json({"type": event, "data": data})
            return True
        except Exception as e:
            logger.warning(f"[Relay] '{event}' delivery to {member_id[:8]} failed: {e}")
            return False

    async def forward(self, room_id: str, sender_id: str, kind: SignalKind, payload: Any) -> int:
        """Deliver a signal to every member of ``room_id`` except the sender.

        The relay attaches ``from`` itself. No acknowledgment, no retry; order
        is whatever the per-socket FIFO gives. Unknown rooms are a no-op.

        Args:
            room_id (str): target room
            sender_id (str): originating member (becomes ``from``)
            kind (SignalKind): offer / answer / ice-candidate
            payload (Any): opaque negotiation data

        Returns:
            int: number of members the frame was delivered to.
        """
        members = self.registry.get_members(room_id)
        if not members:
            logger.debug(f"[Relay] signal for unknown room '{room_id}' dropped")
            return 0

        message = RelayedSignal(origin=sender_id, kind=kind, payload=payload).to_wire()
        delivered = 0
        for member_id in members:
            if member_id == sender_id:
                continue
            if await self.deliver(member_id, MessageType.SIGNAL.value, message):
                delivered += 1

        logger.debug(f"[Relay] {kind.value} from {sender_id[:8]} in '{room_id}' -> {delivered} member(s)")
        return delivered

    async def disconnect(self, member_id: str) -> List[str]:
        """Transport-level disconnect: leave every room, drop the socket.

        Returns:
            List[str]: rooms the member was removed from.
        """
        self.unregister(member_id)
        rooms = await self.registry.leave_all(member_id)
        if rooms:
            logger.info(f"[Relay] member {member_id[:8]} removed from {len(rooms)} room(s) on disconnect")
        return rooms

    def get_connection_count(self) -> int:
        return len(self.connections)
