"""WebSocket routes for session message streaming.

Message Format (inbound from client):
    {"type": "handshake", "session": "abc-123"}
    Every such message (re)binds the connection to ``session``.

Message Format (outbound from server):
    The raw payload published on ``session.<session>``, unchanged.

Close Codes:
    1000: Normal closure
    4400: Message was not a valid handshake
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, WebSocket

from session_relay.api.deps import get_message_router, get_registry
from session_relay.api.ws.connection import ClientConnection
from session_relay.api.ws.handshake import HandshakeHandler
from session_relay.api.ws.message_router import MessageRouter
from session_relay.api.ws.registry import SessionRegistry

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/")
async def websocket_endpoint(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    """Accept a client and run its handshake handler until it disconnects."""
    await websocket.accept()

    conn = ClientConnection(websocket)
    structlog.contextvars.bind_contextvars(connection_id=conn.connection_id)

    logger.info("websocket_connected", remote_addr=conn.remote_addr)

    try:
        await HandshakeHandler(conn, registry).run()
    finally:
        structlog.contextvars.unbind_contextvars("connection_id")


@router.get("/ws/stats")
async def websocket_stats(
    registry: SessionRegistry = Depends(get_registry),
    message_router: MessageRouter = Depends(get_message_router),
) -> dict[str, Any]:
    """Get connection and routing statistics.

    Returns:
        Dictionary with connection counts per session and router counters.
    """
    active_sessions = registry.active_sessions()
    return {
        "total_connections": registry.connection_count(),
        "active_session_count": len(active_sessions),
        "session_connections": {
            session_id: registry.connection_count(session_id)
            for session_id in active_sessions
        },
        "router": {
            "running": message_router.is_running,
            "pattern": message_router.topic_pattern,
            "messages_received": message_router.messages_received,
            "deliveries_succeeded": message_router.deliveries_succeeded,
            "deliveries_failed": message_router.deliveries_failed,
        },
    }
