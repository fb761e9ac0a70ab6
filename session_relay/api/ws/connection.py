"""Client connection wrapper around a Starlette WebSocket.

Gives every accepted WebSocket a stable identity for the session
registry, bounds outbound writes with a deadline, and makes closing
idempotent.
"""

import asyncio
import uuid
from datetime import UTC, datetime

import structlog
from starlette.websockets import WebSocket, WebSocketState

from session_relay.core.exceptions import DeliveryError

logger = structlog.get_logger(__name__)

# WebSocket close codes (4000-4999 are application-defined)
WS_CLOSE_NORMAL = 1000
WS_CLOSE_INVALID_HANDSHAKE = 4400


class ClientConnection:
    """An accepted WebSocket connection to one client.

    Identity is the object itself: two wrappers around different sockets
    never compare equal, so the registry can key on them directly.

    Attributes:
        websocket: The underlying WebSocket.
        connection_id: Short identifier used in logs.
        connected_at: When the connection was accepted.
    """

    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self.websocket = websocket
        self.connection_id = connection_id or f"conn_{uuid.uuid4().hex[:12]}"
        self.connected_at = datetime.now(UTC)
        self._closed = False
        self._close_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"ClientConnection({self.connection_id})"

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    @property
    def remote_addr(self) -> str | None:
        """Client address as ``host:port`` if the server reported one."""
        client = self.websocket.client
        if client is None:
            return None
        return f"{client.host}:{client.port}"

    async def receive(self) -> dict:
        """Receive the next raw ASGI message from the client."""
        return await self.websocket.receive()

    async def send(self, payload: str | bytes, timeout: float) -> None:
        """Send a payload verbatim, as a text frame or a binary frame.

        Args:
            payload: Message to send. ``str`` goes out as text, ``bytes``
                as binary.
            timeout: Max seconds the write may take.

        Raises:
            DeliveryError: If the connection is closed, the write fails or
                the deadline passes.
        """
        if self._closed:
            raise DeliveryError(self.connection_id, "Connection is closed")

        try:
            if isinstance(payload, bytes):
                await asyncio.wait_for(self.websocket.send_bytes(payload), timeout=timeout)
            else:
                await asyncio.wait_for(self.websocket.send_text(payload), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise DeliveryError(
                self.connection_id, f"Write timed out after {timeout}s"
            ) from e
        except Exception as e:
            raise DeliveryError(self.connection_id, str(e) or type(e).__name__) from e

    async def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> bool:
        """Close the connection once.

        Later and concurrent calls are no-ops.

        Args:
            code: WebSocket close code.
            reason: Human-readable close reason.

        Returns:
            True if this call closed the connection, False if it was
            already closed.
        """
        async with self._close_lock:
            if self._closed:
                return False
            self._closed = True

        if WebSocketState.DISCONNECTED in (
            self.websocket.client_state,
            self.websocket.application_state,
        ):
            return True

        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            # Client already went away
            logger.debug(
                "websocket_close_failed",
                connection_id=self.connection_id,
                error=str(e),
            )
        return True
