"""Per-connection handshake handler.

Reads client messages until the connection ends. Every message that
decodes into a Handshake (re)binds the connection to its session; the
first message that does not, or any read error, ends the handler. On
exit the connection is unbound and closed, each exactly once.
"""

from enum import Enum

import structlog
from pydantic import ValidationError
from starlette.websockets import WebSocketDisconnect

from session_relay.api.ws.connection import (
    WS_CLOSE_INVALID_HANDSHAKE,
    WS_CLOSE_NORMAL,
    ClientConnection,
)
from session_relay.api.ws.registry import SessionRegistry
from session_relay.core.exceptions import HandshakeError
from session_relay.models.handshake import Handshake

logger = structlog.get_logger(__name__)


class HandshakeState(str, Enum):
    """Lifecycle of a handshake handler."""

    AWAITING_HANDSHAKE = "awaiting_handshake"
    BOUND = "bound"
    CLOSED = "closed"


def parse_handshake(message: dict) -> Handshake:
    """Decode a raw ASGI receive message into a Handshake.

    Both text and binary frames are accepted.

    Args:
        message: ASGI ``websocket.receive`` message.

    Returns:
        The decoded handshake.

    Raises:
        HandshakeError: If the frame is empty, not JSON, or lacks a
            session.
    """
    data = message.get("text")
    if data is None:
        data = message.get("bytes")
    if not data:
        raise HandshakeError("Empty message")

    try:
        return Handshake.model_validate_json(data)
    except ValidationError as e:
        raise HandshakeError(f"Invalid handshake: {e.error_count()} error(s)") from e


class HandshakeHandler:
    """Drives one connection from handshake to close.

    Example:
        >>> handler = HandshakeHandler(ClientConnection(websocket), registry)
        >>> await handler.run()  # returns when the connection ends
    """

    def __init__(self, conn: ClientConnection, registry: SessionRegistry) -> None:
        self.conn = conn
        self.registry = registry
        self.state = HandshakeState.AWAITING_HANDSHAKE
        self.session_id: str | None = None

    async def run(self) -> None:
        """Read messages until the connection ends, then clean up."""
        close_code = WS_CLOSE_NORMAL
        close_reason = ""

        try:
            while self.state is not HandshakeState.CLOSED:
                message = await self.conn.receive()
                msg_type = message.get("type", "")

                if msg_type == "websocket.disconnect":
                    logger.info(
                        "websocket_client_initiated_disconnect",
                        connection_id=self.conn.connection_id,
                        session_id=self.session_id,
                        code=message.get("code", WS_CLOSE_NORMAL),
                    )
                    break

                if msg_type != "websocket.receive":
                    continue

                try:
                    handshake = parse_handshake(message)
                except HandshakeError as e:
                    logger.warning(
                        "websocket_handshake_invalid",
                        connection_id=self.conn.connection_id,
                        state=self.state.value,
                        error=e.message,
                    )
                    close_code = WS_CLOSE_INVALID_HANDSHAKE
                    close_reason = "Invalid handshake"
                    break

                await self._bind(handshake)

        except WebSocketDisconnect as wsd:
            logger.info(
                "websocket_client_disconnected",
                connection_id=self.conn.connection_id,
                session_id=self.session_id,
                code=getattr(wsd, "code", WS_CLOSE_NORMAL),
            )
        except Exception as e:
            logger.warning(
                "websocket_read_failed",
                connection_id=self.conn.connection_id,
                session_id=self.session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            await self._finish(close_code, close_reason)

    async def _bind(self, handshake: Handshake) -> None:
        previous = await self.registry.bind(self.conn, handshake.session)
        self.session_id = handshake.session

        if self.state is HandshakeState.AWAITING_HANDSHAKE:
            self.state = HandshakeState.BOUND
            logger.info(
                "websocket_handshake_completed",
                connection_id=self.conn.connection_id,
                session_id=handshake.session,
                handshake_type=handshake.type,
                party=handshake.party,
            )
        elif previous != handshake.session:
            logger.info(
                "websocket_session_rebound",
                connection_id=self.conn.connection_id,
                session_id=handshake.session,
                previous_session_id=previous,
            )

    async def _finish(self, code: int, reason: str) -> None:
        """Terminal transition: unbind, then close."""
        if self.state is HandshakeState.CLOSED:
            return
        self.state = HandshakeState.CLOSED

        await self.registry.unbind(self.conn)
        await self.conn.close(code=code, reason=reason)

        logger.info(
            "websocket_cleanup",
            connection_id=self.conn.connection_id,
            session_id=self.session_id,
            close_code=code,
        )
