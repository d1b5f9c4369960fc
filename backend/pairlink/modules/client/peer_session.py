"""Peer session state machine.

Owns at most one ``RTCPeerConnection`` at a time and drives offer/answer/ICE
negotiation with the other room member through the signaling channel.

Main features:
    - Role-checked offer/answer (initiator offers, responder answers)
    - Relayed signals applied one at a time in arrival order
    - Full renegotiation on reconnect (fresh session, never ICE restart)
    - Own retry budget with capped exponential backoff
    - Callbacks from a discarded session are ignored

WebRTC Flow:
    1. Initiator: create_offer() -> ``offer`` sent through the channel
    2. Responder: handle_offer() -> ``answer`` sent back
    3. Initiator: handle_answer()
    4. Both: handle_ice_candidate() for trickled candidates
    5. ``connectionstatechange`` drives the session state

Examples:
    >>> session = PeerSessionStateMachine(send_signal, is_initiator=True)
    >>> await session.create_offer()
    >>> await session.handle_signal("answer", {"type": "answer", "sdp": "..."})
    >>> await session.close()

See Also:
    orchestrator.py: ties the session to the channel and room lifecycle
    aiortc Documentation: https://aiortc.readthedocs.io/
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from aiortc import MediaStreamTrack, RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..shared.dto import SignalKind
from .config import ICEServerConfig, ReconnectConfig, ice_config, reconnect_config
from .errors import NegotiationError
from .retry import RetryBudget

logger = logging.getLogger(__name__)


class PeerSessionState(str, Enum):
    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


TRANSITIONS: Dict[PeerSessionState, Set[PeerSessionState]] = {
    PeerSessionState.NEW: {PeerSessionState.CONNECTING, PeerSessionState.CLOSED},
    PeerSessionState.CONNECTING: {
        PeerSessionState.CONNECTED,
        PeerSessionState.DISCONNECTED,
        PeerSessionState.FAILED,
        PeerSessionState.CLOSED,
    },
    PeerSessionState.CONNECTED: {
        PeerSessionState.DISCONNECTED,
        PeerSessionState.FAILED,
        PeerSessionState.CLOSED,
    },
    PeerSessionState.DISCONNECTED: {
        PeerSessionState.CONNECTED,
        PeerSessionState.FAILED,
        PeerSessionState.CLOSED,
    },
    PeerSessionState.FAILED: {PeerSessionState.CLOSED},
    PeerSessionState.CLOSED: set(),
}

SendSignal = Callable[[SignalKind, dict], Awaitable[Any]]


def create_peer_connection(ice: ICEServerConfig = ice_config) -> RTCPeerConnection:
    """Build an ``RTCPeerConnection`` from the ICE server settings."""
    ice_servers = []
    for server in ice.as_dicts():
        ice_servers.append(RTCIceServer(
            urls=server["urls"],
            username=server.get("username"),
            credential=server.get("credential"),
        ))

    if not ice.has_turn_server:
        logger.debug("[Peer] no TURN server configured, STUN only")

    return RTCPeerConnection(configuration=RTCConfiguration(iceServers=ice_servers))


def parse_ice_candidate(payload: dict):
    """Turn a relayed candidate payload into an aiortc ``RTCIceCandidate``.

    Accepts the flat browser shape ``{"candidate", "sdpMid", "sdpMLineIndex"}``
    as well as the same object nested under ``"candidate"``.

    Returns:
        RTCIceCandidate, or None for an end-of-candidates marker
    """
    inner = payload.get("candidate")
    if isinstance(inner, dict):
        payload = inner
        inner = payload.get("candidate")

    candidate_str = inner or ""
    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[len("candidate:"):]
    if not candidate_str:
        return None

    candidate = candidate_from_sdp(candidate_str)
    candidate.sdpMid = payload.get("sdpMid")
    candidate.sdpMLineIndex = payload.get("sdpMLineIndex")
    return candidate


def serialize_ice_candidate(candidate) -> dict:
    return {
        "candidate": "candidate:" + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


class PeerSessionStateMachine:
    """One peer session's negotiation and reconnection.

    Attributes:
        session (RTCPeerConnection): live peer connection, None until first use
        state (PeerSessionState): current session state
        is_initiator (bool): whether this side sends offers
        budget (RetryBudget): peer reconnection attempts

    Note:
        - ``handle_signal``, ``reconnect``, ``reset`` and ``close`` share one
          ``asyncio.Lock``
        - A session discarded by ``reconnect``/``reset``/``close`` can still
          fire aiortc events; they are dropped by identity check
        - ``reset``/``close`` bump an epoch; negotiation started under an older
          epoch stops at its next suspension point and sends nothing
    """

    def __init__(
        self,
        send_signal: SendSignal,
        is_initiator: bool,
        session_factory: Callable[[], RTCPeerConnection] = create_peer_connection,
        local_tracks: Optional[Callable[[], List[MediaStreamTrack]]] = None,
        on_state_change: Optional[Callable[[PeerSessionState], None]] = None,
        on_remote_track: Optional[Callable[[MediaStreamTrack], None]] = None,
        reconnect: ReconnectConfig = reconnect_config,
    ):
        self.send_signal = send_signal
        self.is_initiator = is_initiator
        self.session_factory = session_factory
        self.local_tracks = local_tracks or (lambda: [])
        self.on_state_change = on_state_change
        self.on_remote_track = on_remote_track
        self.budget = RetryBudget.from_config(reconnect)

        self.session: Optional[RTCPeerConnection] = None
        self.state = PeerSessionState.NEW

        self._lock = asyncio.Lock()
        self._epoch = 0
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def role(self) -> str:
        return "initiator" if self.is_initiator else "responder"

    # ------------------------------------------------------------
    # state
    # ------------------------------------------------------------

    def _set_state(self, state: PeerSessionState) -> None:
        if state == self.state:
            return
        if state not in TRANSITIONS[self.state]:
            logger.warning(f"[Peer] unexpected transition {self.state.value} -> {state.value}")
        else:
            logger.info(f"[Peer] {self.state.value} -> {state.value}")
        self.state = state

        if state == PeerSessionState.CONNECTED:
            self.budget.reset()

        if self.on_state_change:
            try:
                self.on_state_change(state)
            except Exception as e:
                logger.error(f"[Peer] state callback failed: {e}", exc_info=True)

    def _on_transport_state(self, pc: RTCPeerConnection) -> None:
        if pc is not self.session:
            return
        try:
            state = PeerSessionState(pc.connectionState)
        except ValueError:
            logger.debug(f"[Peer] ignoring transport state {pc.connectionState}")
            return
        if state == PeerSessionState.NEW:
            return
        self._set_state(state)

    # ------------------------------------------------------------
    # session lifecycle
    # ------------------------------------------------------------

    def init_session(self) -> RTCPeerConnection:
        """Create the peer connection if there is none and attach local tracks."""
        if self.session is not None:
            return self.session

        pc = self.session_factory()

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            self._on_transport_state(pc)

        @pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            if candidate is None or pc is not self.session:
                return
            await self._send(SignalKind.ICE_CANDIDATE, serialize_ice_candidate(candidate))

        @pc.on("track")
        def on_track(track: MediaStreamTrack):
            if pc is not self.session:
                return
            logger.info(f"[Peer] remote {track.kind} track received")
            if self.on_remote_track:
                self.on_remote_track(track)

        for track in self.local_tracks():
            pc.addTrack(track)

        self.session = pc
        if self.state != PeerSessionState.NEW:
            logger.debug(f"[Peer] fresh session replaces {self.state.value} state")
            self.state = PeerSessionState.NEW
        logger.info(f"[Peer] session created ({self.role})")
        return pc

    async def _discard_session(self) -> None:
        pc = self.session
        self.session = None
        if pc is None:
            return
        try:
            # a cancelled caller must not leave the connection half closed
            await asyncio.shield(pc.close())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[Peer] error closing session: {e}")

    def _mark_negotiating(self) -> None:
        if self.state == PeerSessionState.NEW:
            self._set_state(PeerSessionState.CONNECTING)

    async def _send(self, kind: SignalKind, payload: dict) -> None:
        try:
            await self.send_signal(kind, payload)
        except Exception as e:
            logger.error(f"[Peer] failed to send {kind.value}: {e}")

    @staticmethod
    def _describe(description: RTCSessionDescription) -> dict:
        return {"type": description.type, "sdp": description.sdp}

    @staticmethod
    def _description_from(payload: Any, expected: str) -> RTCSessionDescription:
        if not isinstance(payload, dict) or not payload.get("sdp"):
            raise NegotiationError(f"Malformed {expected}", details={"payload": payload})
        return RTCSessionDescription(sdp=payload["sdp"], type=payload.get("type", expected))

    # ------------------------------------------------------------
    # negotiation
    # ------------------------------------------------------------

    async def create_offer(self) -> None:
        """Initiator only: build and send an offer.

        Raises:
            NegotiationError: called on the responder
        """
        async with self._lock:
            await self._create_offer()

    async def _create_offer(self) -> None:
        if not self.is_initiator:
            raise NegotiationError("Only the initiator creates offers")

        epoch = self._epoch
        pc = self.init_session()
        self._mark_negotiating()
        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        if pc is not self.session or epoch != self._epoch:
            return

        logger.info("[Peer] offer sent")
        await self._send(SignalKind.OFFER, self._describe(pc.localDescription))

    async def handle_offer(self, payload: dict) -> None:
        """Responder only: apply a remote offer and send the answer."""
        async with self._lock:
            await self._handle_offer(payload)

    async def _handle_offer(self, payload: dict) -> None:
        if self.is_initiator:
            raise NegotiationError("Initiator received an offer")

        description = self._description_from(payload, "offer")
        epoch = self._epoch

        # a second offer means the initiator renegotiates from scratch
        if self.session is not None and self.session.remoteDescription is not None:
            logger.info("[Peer] new offer on a used session, starting fresh")
            await self._discard_session()

        pc = self.init_session()
        self._mark_negotiating()
        await pc.setRemoteDescription(description)
        answer = await pc.createAnswer()
        await pc.setLocalDescription(answer)
        if pc is not self.session or epoch != self._epoch:
            return

        logger.info("[Peer] answer sent")
        await self._send(SignalKind.ANSWER, self._describe(pc.localDescription))

    async def handle_answer(self, payload: dict) -> None:
        async with self._lock:
            await self._handle_answer(payload)

    async def _handle_answer(self, payload: dict) -> None:
        if self.session is None:
            logger.warning("[Peer] answer without a session ignored")
            return
        description = self._description_from(payload, "answer")
        await self.session.setRemoteDescription(description)
        logger.info("[Peer] answer applied")

    async def handle_ice_candidate(self, payload: dict) -> None:
        async with self._lock:
            await self._handle_ice_candidate(payload)

    async def _handle_ice_candidate(self, payload: dict) -> None:
        if self.session is None:
            logger.warning("[Peer] ICE candidate without a session ignored")
            return
        try:
            candidate = parse_ice_candidate(payload or {})
            if candidate is None:
                return
            await self.session.addIceCandidate(candidate)
        except Exception as e:
            logger.warning(f"[Peer] failed to add ICE candidate: {e}")

    async def handle_signal(self, kind: Union[SignalKind, str], payload: Any) -> None:
        """Apply one relayed signal. Calls are serialized in arrival order."""
        try:
            kind = SignalKind(kind)
        except ValueError:
            logger.warning(f"[Peer] unknown signal kind: {kind}")
            return

        async with self._lock:
            if kind == SignalKind.OFFER:
                await self._handle_offer(payload)
            elif kind == SignalKind.ANSWER:
                await self._handle_answer(payload)
            else:
                await self._handle_ice_candidate(payload)

    # ------------------------------------------------------------
    # reconnection
    # ------------------------------------------------------------

    async def reconnect(self, is_initiator: bool) -> None:
        """Throw the session away and renegotiate from a fresh one.

        A ``reset``/``close`` issued after this call started wins: the fresh
        session is never built and no offer goes out.
        """
        epoch = self._epoch
        async with self._lock:
            if epoch != self._epoch:
                logger.debug("[Peer] reconnect superseded by teardown")
                return
            self.is_initiator = is_initiator
            logger.info(f"[Peer] reconnecting as {self.role}")
            await self._discard_session()
            if epoch != self._epoch:
                return
            self.init_session()
            if is_initiator:
                await self._create_offer()

    def attempt_reconnection(self, is_initiator: bool) -> bool:
        """Schedule one deferred ``reconnect``.

        Returns:
            bool: False once the budget is exhausted
        """
        if self.budget.exhausted:
            logger.error(f"[Peer] reconnection budget exhausted ({self.budget.max_attempts} attempts)")
            return False

        delay = self.budget.consume()
        self.cancel_reconnection()
        logger.info(f"[Peer] reconnect attempt {self.budget.attempts}/{self.budget.max_attempts} in {delay:.1f}s")
        self._reconnect_task = asyncio.ensure_future(self._deferred_reconnect(delay, is_initiator))
        return True

    async def _deferred_reconnect(self, delay: float, is_initiator: bool) -> None:
        try:
            await asyncio.sleep(delay)
            await self.reconnect(is_initiator)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Peer] reconnect failed: {e}", exc_info=True)
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def cancel_reconnection(self) -> None:
        """Cancel the scheduled or running deferred reconnect, if any."""
        task = self._reconnect_task
        if task is None or task is asyncio.current_task():
            return
        self._reconnect_task = None
        if not task.done():
            task.cancel()
            logger.debug("[Peer] pending reconnection cancelled")

    @property
    def reconnection_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def reset(self) -> None:
        """Discard the session and go back to ``new``. The machine stays usable."""
        self._epoch += 1
        self.cancel_reconnection()
        self.budget.reset()
        async with self._lock:
            await self._discard_session()
            self.state = PeerSessionState.NEW
        logger.info("[Peer] session reset")

    async def close(self) -> None:
        """Terminal teardown. Waits for any negotiation in progress to stop."""
        self._epoch += 1
        self.cancel_reconnection()
        self.budget.reset()
        async with self._lock:
            await self._discard_session()
            self._set_state(PeerSessionState.CLOSED)
