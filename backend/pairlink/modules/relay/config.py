"""Relay server settings."""

import os
import logging
from dataclasses import dataclass

from ..shared.config import ENV_PATH

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelayConfig:
    """Signaling relay settings."""

    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "4000"))

    # members per room
    ROOM_CAPACITY: int = 2

    # comma separated, "*" allows any origin
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    @property
    def cors_origins(self) -> list:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@dataclass(frozen=True)
class LogConfig:
    """Server log settings."""

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")

    # days to keep dated log files
    LOG_RETENTION_DAYS: int = int(os.getenv("LOG_RETENTION_DAYS", "60"))


relay_config = RelayConfig()
log_config = LogConfig()

logger.debug(f"[Relay Config] .env path: {ENV_PATH}, port: {relay_config.PORT}")
