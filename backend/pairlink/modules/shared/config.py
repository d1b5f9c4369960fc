"""Settings shared by the relay and the client.

Loads ``backend/config/.env`` once and exposes the ICE server configuration
both sides need: the relay hands it to browsers/clients over HTTP, the client
builds its ``RTCConfiguration`` from it.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PATH = Path(__file__).resolve().parents[3] / "config" / ".env"
load_dotenv(ENV_PATH)


@dataclass(frozen=True)
class ICEServerConfig:
    """ICE server settings."""

    # TURN
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # Public STUN fallback
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """Whether TURN is fully configured."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def as_dicts(self) -> List[dict]:
        """ICE servers in the ``RTCIceServer`` JSON shape browsers expect.

        Examples:
            >>> ICEServerConfig(STUN_SERVER_URL=None).as_dicts()[0]
            {'urls': 'stun:stun.l.google.com:19302'}
        """
        servers = []
        if self.STUN_SERVER_URL:
            servers.append({"urls": self.STUN_SERVER_URL})
        for stun_url in self.DEFAULT_STUN_SERVERS:
            servers.append({"urls": stun_url})
        if self.has_turn_server:
            servers.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL,
            })
        return servers


ice_config = ICEServerConfig()

logger.debug(f"[Config] .env path: {ENV_PATH} (exists: {ENV_PATH.exists()})")
logger.debug(f"[Config] TURN configured: {ice_config.has_turn_server}")
