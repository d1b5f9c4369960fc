"""FastAPI signaling relay for two-party WebRTC rooms.

Serves one WebSocket endpoint that lets two clients meet in a room and
exchange offer/answer/ICE candidates. Media flows peer to peer; the relay
never sees it.

Main features:
    - Room create/join/leave with a capacity of two
    - Payload-agnostic relay of negotiation messages
    - peer-joined / peer-left notifications
    - ICE server list for clients

Architecture:
    - RoomRegistry: in-memory room membership
    - SignalRelay: connection table and fan-out
    - WebSocket: signaling transport
"""
import glob
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .modules.relay import RoomRegistry, SignalRelay, relay_config, log_config
from .modules.shared.config import ice_config
from .routes import health_router, signaling_router, init_relay

logger = logging.getLogger(__name__)

SERVICE_NAME = "pairlink signaling relay"


def cleanup_old_logs(log_dir: str = log_config.LOG_DIR,
                     retention_days: int = log_config.LOG_RETENTION_DAYS) -> int:
    """Delete dated server log files older than the retention window.

    Args:
        log_dir: log directory
        retention_days: days to keep

    Returns:
        number of files deleted
    """
    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, "server_*.log")):
        try:
            date_str = os.path.basename(log_file).replace("server_", "").replace(".log", "")
            if datetime.strptime(date_str, "%Y%m%d") < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


def setup_logging(level: str = log_config.LOG_LEVEL, log_dir: str = log_config.LOG_DIR) -> None:
    """Console + dated file logging for the server process."""
    os.makedirs(log_dir, exist_ok=True)
    log_filename = os.path.join(log_dir, f"server_{datetime.now().strftime('%Y%m%d')}.log")

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_filename, encoding="utf-8"),
        ]
    )
    logger.info(f"Logging initialized: level={level}, file={log_filename}")


def create_app(relay: Optional[SignalRelay] = None) -> FastAPI:
    """Build the relay application.

    Args:
        relay: relay to serve; a fresh one with an empty registry when omitted

    Returns:
        FastAPI: configured application
    """
    relay = relay or SignalRelay(RoomRegistry(capacity=relay_config.ROOM_CAPACITY))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Signaling relay starting...")

        deleted_logs = cleanup_old_logs()
        if deleted_logs > 0:
            logger.info(f"Removed {deleted_logs} log file(s) older than {log_config.LOG_RETENTION_DAYS} days")

        yield

        logger.info(f"Signaling relay stopping ({relay.get_connection_count()} connection(s) open)")

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=relay_config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(signaling_router)

    init_relay(relay)
    app.state.relay = relay

    @app.get("/")
    async def root():
        """Liveness probe.

        Returns:
            dict: ``{"status": "ok", "service": ...}``
        """
        return {"status": "ok", "service": SERVICE_NAME}

    @app.get("/api/rooms")
    async def get_rooms_api():
        """Live rooms and their members."""
        return {"rooms": relay.registry.get_room_list()}

    @app.get("/api/ice-servers")
    async def get_ice_servers():
        """STUN (and TURN when configured) servers for clients.

        TURN credentials live in the server environment only and are handed
        out here.

        Returns:
            list: ``RTCIceServer``-shaped dicts
        """
        servers = ice_config.as_dicts()
        logger.info(f"ICE servers served: {'STUN + TURN' if ice_config.has_turn_server else 'STUN only'}")
        return servers

    return app


app = create_app()


def main():
    import uvicorn

    setup_logging()
    uvicorn.run(app, host=relay_config.HOST, port=relay_config.PORT, log_level="info")


if __name__ == "__main__":
    main()
