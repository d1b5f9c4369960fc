"""Call lifecycle orchestration.

Composes local media, the reconnecting signaling channel, the room join
protocol and the peer session into one call with a single user-facing
status.

Status table:
    idle -> waiting -> connecting -> connected
    connected -> disconnected -> connecting   (automatic peer retry)
    any -> disconnected -> idle               (end_call)

Each start() opens a new generation. Callbacks registered by an older
generation are dropped, so nothing from a torn-down attempt can move the
status after end_call().

Examples:
    >>> call = ConnectionOrchestrator("r1", is_creator=True)
    >>> call.add_listener(lambda status: print(status.value))
    >>> await call.start()
    waiting
    connecting
    >>> call.toggle_mute()
    >>> await call.end_call()
    disconnected
    idle
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from aiortc import MediaStreamTrack

from ..shared.dto import MessageType, RoomResult, SignalKind
from .config import JoinConfig, OrchestratorConfig, ReconnectConfig, join_config, orchestrator_config, reconnect_config
from .error_messages import DEFAULT_START_ERROR, PEER_RECONNECT_FAILED_MESSAGE, RECONNECT_FAILED_MESSAGE, format_media_error
from .errors import ChannelError, MediaError, RoomJoinError
from .media import LocalMedia
from .peer_session import PeerSessionState, PeerSessionStateMachine, create_peer_connection
from .reconnecting_channel import ChannelState, ReconnectingChannel
from .room_join import RoomJoinProtocol

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


STATUS_TRANSITIONS: Dict[ConnectionStatus, Set[ConnectionStatus]] = {
    ConnectionStatus.IDLE: {ConnectionStatus.WAITING},
    ConnectionStatus.WAITING: {
        ConnectionStatus.CONNECTING,
        ConnectionStatus.DISCONNECTED,
        ConnectionStatus.IDLE,
    },
    ConnectionStatus.CONNECTING: {
        ConnectionStatus.CONNECTED,
        ConnectionStatus.DISCONNECTED,
        ConnectionStatus.IDLE,
    },
    ConnectionStatus.CONNECTED: {
        ConnectionStatus.CONNECTING,
        ConnectionStatus.DISCONNECTED,
        ConnectionStatus.IDLE,
    },
    ConnectionStatus.DISCONNECTED: {
        ConnectionStatus.CONNECTING,
        ConnectionStatus.CONNECTED,
        ConnectionStatus.WAITING,
        ConnectionStatus.IDLE,
    },
}


class ConnectionOrchestrator:
    """One two-party call.

    Attributes:
        room_id (str): room shared with the other participant
        is_creator (bool): creator offers, joiner answers
        status (ConnectionStatus): user-facing call status
        error (str): user-facing message of the last failure, None if healthy
        reconnecting (bool): a channel or peer reconnection is in progress
        retry_count (int): attempts of the reconnection in progress
        muted (bool): local audio blanked
        video_off (bool): local video blanked
    """

    def __init__(
        self,
        room_id: str,
        is_creator: bool,
        media: Optional[LocalMedia] = None,
        channel: Optional[ReconnectingChannel] = None,
        session_factory: Callable = create_peer_connection,
        on_remote_track: Optional[Callable[[MediaStreamTrack], Any]] = None,
        config: OrchestratorConfig = orchestrator_config,
        join: JoinConfig = join_config,
        reconnect: ReconnectConfig = reconnect_config,
    ):
        self.room_id = room_id
        self.is_creator = is_creator
        self.media = media or LocalMedia()
        self.channel = channel or ReconnectingChannel()
        self.config = config
        self.join_config = join

        self.peer = PeerSessionStateMachine(
            send_signal=self._send_signal,
            is_initiator=is_creator,
            session_factory=session_factory,
            local_tracks=self._local_tracks,
            on_state_change=self._on_peer_state,
            on_remote_track=on_remote_track,
            reconnect=reconnect,
        )

        self.status = ConnectionStatus.IDLE
        self.error: Optional[str] = None
        self.reconnecting = False
        self.retry_count = 0
        self.muted = False
        self.video_off = False

        self._generation = 0
        self._running = False
        self._start_task: Optional[asyncio.Task] = None
        self._join_task: Optional[asyncio.Task] = None
        self._join_error: Optional[str] = None
        self._listeners: List[Callable[[ConnectionStatus], None]] = []

        self.channel.add_listener(self._on_channel_state)
        self.channel.on_connect(self._on_channel_connect)

    # ------------------------------------------------------------
    # status
    # ------------------------------------------------------------

    def add_listener(self, listener: Callable[[ConnectionStatus], None]) -> None:
        self._listeners.append(listener)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        if status not in STATUS_TRANSITIONS[self.status]:
            logger.warning(f"[Call] invalid status transition {self.status.value} -> {status.value}")
            return

        logger.info(f"[Call] status {self.status.value} -> {status.value}")
        self.status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"[Call] status listener failed: {e}", exc_info=True)

    def _fail(self, message: str) -> None:
        self.error = message
        logger.error(f"[Call] {message}")
        self._set_status(ConnectionStatus.DISCONNECTED)

    def _is_current(self, generation: int) -> bool:
        return self._running and generation == self._generation

    # ------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------

    async def start(self) -> None:
        """Acquire media, connect, join the room.

        Failures never raise: the status becomes ``disconnected`` and
        ``error`` holds the first available message among media, channel and
        join errors.
        """
        self._generation += 1
        generation = self._generation
        self._running = True
        self._start_task = asyncio.current_task()
        self._join_error = None
        self.error = None
        self._set_status(ConnectionStatus.WAITING)

        media_error = channel_error = None
        try:
            try:
                await self.media.acquire()
            except MediaError as e:
                media_error = format_media_error(e)
                raise

            try:
                await self.channel.connect(self._channel_handlers(generation))
            except ChannelError as e:
                channel_error = self.channel.error or e.message
                raise

            # a channel reconnect may replace the join task while we wait
            join_task = self._join_task
            while join_task is not None and self._is_current(generation):
                await asyncio.wait({join_task})
                if join_task is self._join_task:
                    break
                join_task = self._join_task
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._is_current(generation):
                return
            logger.error(f"[Call] start failed: {e}")
            self._fail(media_error or channel_error or self._join_error or str(e) or DEFAULT_START_ERROR)
        finally:
            if self._start_task is asyncio.current_task():
                self._start_task = None

    async def end_call(self) -> None:
        """Tear everything down: peer session, channel, media. Ends at ``idle``."""
        logger.info(f"[Call] ending call in room {self.room_id}")
        self._generation += 1
        self._running = False

        current = asyncio.current_task()
        pending = [task for task in (self._join_task, self._start_task)
                   if task is not None and task is not current and not task.done()]
        self._join_task = None
        self._start_task = None
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        await self.peer.close()
        await self.channel.disconnect()
        self.media.release()

        self.reconnecting = False
        self.retry_count = 0
        self.error = None
        self.muted = False
        self.video_off = False

        if self.status not in (ConnectionStatus.IDLE, ConnectionStatus.DISCONNECTED):
            self._set_status(ConnectionStatus.DISCONNECTED)
        self._set_status(ConnectionStatus.IDLE)

    async def handle_retry(self) -> None:
        """Full restart after a terminal failure."""
        logger.info("[Call] retrying call")
        await self.end_call()
        await asyncio.sleep(self.config.RETRY_SETTLE_DELAY)
        await self.start()

    # ------------------------------------------------------------
    # controls
    # ------------------------------------------------------------

    def toggle_mute(self) -> bool:
        """Blank or restore local audio. Returns the new ``muted`` flag."""
        if self.media.set_track_enabled("audio", self.muted):
            self.muted = not self.muted
            logger.info(f"[Call] audio {'muted' if self.muted else 'unmuted'}")
        return self.muted

    def toggle_video(self) -> bool:
        """Blank or restore local video. Returns the new ``video_off`` flag."""
        if self.media.set_track_enabled("video", self.video_off):
            self.video_off = not self.video_off
            logger.info(f"[Call] video {'off' if self.video_off else 'on'}")
        return self.video_off

    def copy_room_id(self) -> str:
        """Room id to share with the other participant."""
        return self.room_id

    # ------------------------------------------------------------
    # channel wiring
    # ------------------------------------------------------------

    def _channel_handlers(self, generation: int) -> Dict[str, Callable]:
        return {
            MessageType.SIGNAL.value: lambda data: self._on_signal(generation, data),
            MessageType.PEER_JOINED.value: lambda data: self._on_peer_joined(generation, data),
            MessageType.PEER_LEFT.value: lambda data: self._on_peer_left(generation, data),
        }

    async def _send_signal(self, kind: SignalKind, payload: dict) -> None:
        await self.channel.send(MessageType.SIGNAL.value, {
            "room_id": self.room_id,
            "kind": kind.value,
            "payload": payload,
        })

    def _local_tracks(self) -> List[MediaStreamTrack]:
        if self.media.stream is None:
            return []
        return self.media.stream.session_tracks()

    def _on_channel_connect(self) -> None:
        if not self._running:
            return
        generation = self._generation
        if self._join_task is not None and not self._join_task.done():
            self._join_task.cancel()

        protocol = RoomJoinProtocol(self.channel, self.room_id, self.is_creator, self.join_config)
        self._join_task = protocol.start(
            on_success=lambda result: self._on_room_joined(generation, result),
            on_error=lambda err: self._on_join_failed(generation, err),
        )

    def _on_channel_state(self, state: ChannelState, attempts: int) -> None:
        if not self._running:
            return

        if state == ChannelState.RECONNECTING:
            self.peer.cancel_reconnection()
            self.reconnecting = True
            self.retry_count = attempts
        elif state == ChannelState.CONNECTED:
            if not self.peer.reconnection_pending:
                self.reconnecting = False
                self.retry_count = 0
        elif state == ChannelState.FAILED:
            self.peer.cancel_reconnection()
            self.reconnecting = False
            self.retry_count = 0
            if self.status != ConnectionStatus.WAITING:
                self._fail(self.channel.error or RECONNECT_FAILED_MESSAGE)

    async def _on_room_joined(self, generation: int, result: RoomResult) -> None:
        if not self._is_current(generation):
            return
        self._join_error = None
        self.error = None

        if self.peer.session is None:
            self.peer.init_session()
        else:
            await self.peer.reconnect(self.is_creator)
        if not self._is_current(generation):
            return
        self._set_status(ConnectionStatus.CONNECTING)

    def _on_join_failed(self, generation: int, err: RoomJoinError) -> None:
        if not self._is_current(generation):
            return
        self._join_error = err.message
        self._fail(err.message)

    async def _on_signal(self, generation: int, data: Any) -> None:
        if not self._is_current(generation) or not isinstance(data, dict):
            return
        try:
            await self.peer.handle_signal(data.get("kind"), data.get("payload"))
        except Exception as e:
            logger.error(f"[Call] failed to apply {data.get('kind')} signal: {e}")

    async def _on_peer_joined(self, generation: int, data: Any) -> None:
        if not self._is_current(generation):
            return
        logger.info(f"[Call] peer joined: {str((data or {}).get('member_id'))[:8]}")
        if not self.is_creator:
            return

        try:
            if self.peer.session is not None and self.peer.state != PeerSessionState.NEW:
                await self.peer.reconnect(True)
            else:
                await self.peer.create_offer()
        except Exception as e:
            logger.error(f"[Call] offer failed: {e}", exc_info=True)
            return
        if not self._is_current(generation):
            return
        self._set_status(ConnectionStatus.CONNECTING)

    async def _on_peer_left(self, generation: int, data: Any) -> None:
        if not self._is_current(generation):
            return
        logger.info(f"[Call] peer left: {str((data or {}).get('member_id'))[:8]}")
        self._set_status(ConnectionStatus.DISCONNECTED)
        self.reconnecting = False
        self.retry_count = 0
        await self.peer.reset()

    # ------------------------------------------------------------
    # peer wiring
    # ------------------------------------------------------------

    def _on_peer_state(self, state: PeerSessionState) -> None:
        if not self._running:
            return

        if state == PeerSessionState.CONNECTING:
            self._set_status(ConnectionStatus.CONNECTING)
        elif state == PeerSessionState.CONNECTED:
            self.reconnecting = False
            self.retry_count = 0
            self.error = None
            self._set_status(ConnectionStatus.CONNECTED)
        elif state in (PeerSessionState.DISCONNECTED, PeerSessionState.FAILED):
            self._set_status(ConnectionStatus.DISCONNECTED)
            if not self.channel.connected:
                logger.info("[Call] channel down, peer retry deferred to rejoin")
                return
            if self.peer.attempt_reconnection(self.is_creator):
                self.reconnecting = True
                self.retry_count = self.peer.budget.attempts
            else:
                self.reconnecting = False
                self.error = PEER_RECONNECT_FAILED_MESSAGE
