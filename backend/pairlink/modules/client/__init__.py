"""Client modules.

Classes:
    ConnectionOrchestrator: one call, from media to connected peer
    ReconnectingChannel: signaling channel with timeout and reconnection supervision
    WebSocketSignalChannel: ``websockets`` transport to the relay
    RoomJoinProtocol: create-or-join with retries
    PeerSessionStateMachine: RTCPeerConnection negotiation and reconnection
    LocalMedia / MediaStream: capture source and its tracks
    ToggleableTrack: mute / camera-off track wrapper

Config:
    signaling_config, reconnect_config, join_config, media_config, orchestrator_config
"""

from .errors import (
    PairlinkError,
    ChannelError,
    ConnectionTimeoutError,
    ChannelClosedError,
    ReconnectExhaustedError,
    RoomJoinError,
    NegotiationError,
    MediaError,
    PermissionDeniedError,
    DeviceNotFoundError,
    DeviceBusyError,
)
from .retry import RetryBudget
from .signal_channel import SignalChannel, WebSocketSignalChannel
from .reconnecting_channel import ChannelState, ReconnectingChannel
from .room_join import RoomJoinProtocol
from .peer_session import PeerSessionState, PeerSessionStateMachine, create_peer_connection
from .tracks import ToggleableTrack
from .media import LocalMedia, MediaStream
from .orchestrator import ConnectionOrchestrator, ConnectionStatus
from .config import (
    signaling_config,
    reconnect_config,
    join_config,
    media_config,
    orchestrator_config,
    SignalingConfig,
    ReconnectConfig,
    JoinConfig,
    MediaConfig,
    OrchestratorConfig,
)

__all__ = [
    # Classes
    "ConnectionOrchestrator",
    "ConnectionStatus",
    "ReconnectingChannel",
    "ChannelState",
    "SignalChannel",
    "WebSocketSignalChannel",
    "RoomJoinProtocol",
    "PeerSessionStateMachine",
    "PeerSessionState",
    "create_peer_connection",
    "LocalMedia",
    "MediaStream",
    "ToggleableTrack",
    "RetryBudget",
    # Errors
    "PairlinkError",
    "ChannelError",
    "ConnectionTimeoutError",
    "ChannelClosedError",
    "ReconnectExhaustedError",
    "RoomJoinError",
    "NegotiationError",
    "MediaError",
    "PermissionDeniedError",
    "DeviceNotFoundError",
    "DeviceBusyError",
    # Config
    "signaling_config",
    "reconnect_config",
    "join_config",
    "media_config",
    "orchestrator_config",
    "SignalingConfig",
    "ReconnectConfig",
    "JoinConfig",
    "MediaConfig",
    "OrchestratorConfig",
]
