"""WebSocket relay package.

Bridges Redis pub/sub messages to WebSocket clients by session.

Components:
- connection: WebSocket wrapper with bounded writes and idempotent close
- registry: Track which session each connection is bound to
- handshake: Per-connection handshake and read loop
- broker: Redis pattern subscription adapter
- message_router: Subscribe to Redis and fan out to matching connections
"""

from session_relay.api.ws.broker import BrokerMessage, RedisBroker
from session_relay.api.ws.connection import ClientConnection
from session_relay.api.ws.handshake import HandshakeHandler, HandshakeState
from session_relay.api.ws.message_router import MessageRouter
from session_relay.api.ws.registry import SessionRegistry

__all__ = [
    "BrokerMessage",
    "ClientConnection",
    "HandshakeHandler",
    "HandshakeState",
    "MessageRouter",
    "RedisBroker",
    "SessionRegistry",
]
