"""Relay-side modules.

Classes:
    RoomRegistry: room membership table
    Room: room data class
    SignalRelay: per-room fan-out of signaling frames

Config:
    relay_config: host, port, capacity, CORS
    log_config: server log settings
"""

from .room_registry import RoomRegistry, Room
from .signal_relay import SignalRelay
from .config import relay_config, log_config, RelayConfig, LogConfig

__all__ = [
    # Classes
    "RoomRegistry",
    "Room",
    "SignalRelay",
    # Config
    "relay_config",
    "log_config",
    "RelayConfig",
    "LogConfig",
]
