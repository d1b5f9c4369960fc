"""Signaling WebSocket router.

One WebSocket per client. Handles room create/join/leave and relays
offer/answer/ICE candidates to the other room member.
"""

import logging
import uuid
from typing import Optional, TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ..modules.shared import Envelope, MessageType, SignalRequest

if TYPE_CHECKING:
    from ..modules.relay import SignalRelay

logger = logging.getLogger(__name__)

router = APIRouter()

# set by app.py
_relay: Optional["SignalRelay"] = None


def init_relay(relay: "SignalRelay"):
    """Bind the relay instance used by the endpoint.

    Args:
        relay: SignalRelay shared by every connection
    """
    global _relay
    _relay = relay
    logger.info("[Signaling] relay bound to router")


def get_relay() -> Optional["SignalRelay"]:
    return _relay


async def _send_error(websocket: WebSocket, message: str, request_id: Optional[int] = None):
    frame = {"type": MessageType.ERROR.value, "data": {"message": message}}
    if request_id is not None:
        frame["request_id"] = request_id
    await websocket.send_json(frame)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Signaling endpoint.

    Handled frame types:
        - create-room: create a room (ack)
        - join-room: join an existing room (ack)
        - signal: relay offer / answer / ice-candidate to the other member
        - leave-room: leave a room

    The member id is assigned here and sent in a ``member-id`` frame right
    after the socket is accepted. When the socket goes away for any reason
    the member is removed from every room.

    Args:
        websocket: FastAPI WebSocket connection
    """
    if _relay is None:
        logger.error("[Signaling] relay not initialized")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()

    member_id = str(uuid.uuid4())
    _relay.register(member_id, websocket)

    try:
        await websocket.send_json({
            "type": MessageType.MEMBER_ID.value,
            "data": {"member_id": member_id}
        })

        while True:
            raw = await websocket.receive_text()
            try:
                envelope = Envelope.model_validate_json(raw)
            except ValidationError:
                logger.warning(f"[Signaling] malformed frame from {member_id[:8]}")
                await _send_error(websocket, "Malformed frame")
                continue

            message_type = envelope.type

            if message_type in (MessageType.CREATE_ROOM.value, MessageType.JOIN_ROOM.value):
                await _handle_room_request(websocket, member_id, envelope)

            elif message_type == MessageType.SIGNAL.value:
                await _handle_signal(websocket, member_id, envelope)

            elif message_type == MessageType.LEAVE_ROOM.value:
                if isinstance(envelope.data, str) and envelope.data:
                    await _relay.registry.leave(envelope.data, member_id)

            else:
                logger.warning(f"[Signaling] unknown frame type: {message_type}")
                await _send_error(websocket, f"Unknown message type: {message_type}", envelope.request_id)

    except WebSocketDisconnect:
        logger.info(f"[Signaling] member {member_id[:8]} disconnected")
    except Exception as e:
        logger.error(f"[Signaling] connection error for {member_id[:8]}: {e}", exc_info=True)
    finally:
        await _relay.disconnect(member_id)
        logger.info(f"[Signaling] member {member_id[:8]} cleaned up")


async def _handle_room_request(websocket: WebSocket, member_id: str, envelope: Envelope):
    """create-room / join-room, answered with an ``ack`` frame."""
    room_id = envelope.data
    if not isinstance(room_id, str) or not room_id:
        await _send_error(websocket, "Room id is required", envelope.request_id)
        return

    if envelope.type == MessageType.CREATE_ROOM.value:
        result = await _relay.registry.create(room_id, member_id)
    else:
        result = await _relay.registry.join(room_id, member_id)

    if envelope.request_id is None:
        return

    await websocket.send_json({
        "type": MessageType.ACK.value,
        "request_id": envelope.request_id,
        "data": result.to_wire()
    })


async def _handle_signal(websocket: WebSocket, member_id: str, envelope: Envelope):
    """Fire-and-forget relay of a negotiation message."""
    try:
        request = SignalRequest.model_validate(envelope.data)
    except ValidationError:
        logger.warning(f"[Signaling] invalid signal from {member_id[:8]}")
        await _send_error(websocket, "Invalid signal")
        return

    await _relay.forward(request.room_id, member_id, request.kind, request.payload)
