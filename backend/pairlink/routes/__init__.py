"""FastAPI routers for the relay."""

from .health import router as health_router
from .signaling import router as signaling_router, init_relay, get_relay

__all__ = [
    "health_router",
    "signaling_router",
    "init_relay",
    "get_relay",
]
