"""Health check router.

Reports relay liveness plus the size of the in-memory tables.
"""

from fastapi import APIRouter

from .signaling import get_relay

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """Relay status.

    Returns:
        dict: ``status`` plus room and connection counts. ``status`` is
        ``"not_ready"`` until app.py binds the relay.
    """
    relay = get_relay()
    if relay is None:
        return {"status": "not_ready", "rooms": 0, "connections": 0}

    return {
        "status": "ok",
        "rooms": relay.registry.get_room_count(),
        "connections": relay.get_connection_count(),
    }
