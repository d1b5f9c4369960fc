"""Client settings.

Signaling endpoint, timeouts, retry budgets, join policy and media source.
Values come from the environment (``backend/config/.env``); tests build their
own instances with short delays.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from ..shared.config import ENV_PATH, ice_config, ICEServerConfig

logger = logging.getLogger(__name__)


# ============================================================
# Signaling
# ============================================================

@dataclass(frozen=True)
class SignalingConfig:
    """Signaling channel settings."""

    SIGNALING_SERVER_URL: str = os.getenv("SIGNALING_SERVER_URL", "ws://localhost:4000/ws")

    # A connect attempt that has not completed within this window fails (seconds)
    CONNECTION_TIMEOUT: float = float(os.getenv("CONNECTION_TIMEOUT", "10"))

    # Acknowledged requests (create-room / join-room)
    REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "10"))


# ============================================================
# Reconnection
# ============================================================

@dataclass(frozen=True)
class ReconnectConfig:
    """Retry budget used by both the channel and the peer session."""

    MAX_RECONNECT_ATTEMPTS: int = int(os.getenv("MAX_RECONNECT_ATTEMPTS", "5"))

    # seconds
    INITIAL_RECONNECT_DELAY: float = float(os.getenv("INITIAL_RECONNECT_DELAY", "1.0"))
    MAX_RECONNECT_DELAY: float = float(os.getenv("MAX_RECONNECT_DELAY", "16.0"))


# ============================================================
# Room join
# ============================================================

@dataclass(frozen=True)
class JoinConfig:
    """Create-or-join retry policy."""

    JOIN_START_DELAY: float = 0.1
    JOIN_MAX_ATTEMPTS: int = 5

    # joiner waits attempt * JOIN_RETRY_DELAY after ROOM_NOT_FOUND
    JOIN_RETRY_DELAY: float = 2.0

    # creator waits attempt * CREATE_FALLBACK_DELAY after ROOM_ALREADY_EXISTS
    CREATE_FALLBACK_DELAY: float = 1.0


# ============================================================
# Local media
# ============================================================

@dataclass(frozen=True)
class MediaConfig:
    """Local capture source handed to ``aiortc.contrib.media.MediaPlayer``."""

    # e.g. "/dev/video0" with format "v4l2", or a file path
    MEDIA_SOURCE: Optional[str] = os.getenv("MEDIA_SOURCE") or None
    MEDIA_FORMAT: Optional[str] = os.getenv("MEDIA_FORMAT") or None
    VIDEO_SIZE: str = os.getenv("VIDEO_SIZE", "1280x720")


@dataclass(frozen=True)
class OrchestratorConfig:
    """Top-level call lifecycle settings."""

    # pause between end_call() and start() in handle_retry() (seconds)
    RETRY_SETTLE_DELAY: float = 0.5


# ============================================================
# Singletons
# ============================================================

signaling_config = SignalingConfig()
reconnect_config = ReconnectConfig()
join_config = JoinConfig()
media_config = MediaConfig()
orchestrator_config = OrchestratorConfig()

__all__ = [
    "ENV_PATH",
    "ICEServerConfig",
    "ice_config",
    "SignalingConfig",
    "ReconnectConfig",
    "JoinConfig",
    "MediaConfig",
    "OrchestratorConfig",
    "signaling_config",
    "reconnect_config",
    "join_config",
    "media_config",
    "orchestrator_config",
]

logger.debug(f"[Client Config] signaling server: {signaling_config.SIGNALING_SERVER_URL}")
logger.debug(f"[Client Config] reconnect budget: {reconnect_config.MAX_RECONNECT_ATTEMPTS} attempts")
